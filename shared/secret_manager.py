#!/usr/bin/env python3
"""
GCP Secret Manager access for cloud deployments.

On GCP the IG login (api_key, username, password and optionally
environment) and the Google Sheets service account are stored as JSON
secrets. Off GCP every getter returns None and the local config.json is
used instead.
"""

import os
import json
import logging
from typing import Optional, Dict, Any

import requests

logger = logging.getLogger(__name__)

IG_CREDENTIALS_SECRET = "strangle-ig-credentials"
SHEETS_CREDENTIALS_SECRET = "strangle-google-sheets-credentials"

PROJECT_ENV_VARS = ("GCP_PROJECT", "GOOGLE_CLOUD_PROJECT")
METADATA_URL = "http://metadata.google.internal/computeMetadata/v1"


def _metadata(path: str, timeout: float) -> Optional[requests.Response]:
    """GET a metadata server path; None when the server is unreachable."""
    try:
        response = requests.get(
            f"{METADATA_URL}/{path}",
            headers={"Metadata-Flavor": "Google"},
            timeout=timeout
        )
    except requests.exceptions.RequestException:
        logger.debug(f"Metadata server unreachable ({path})")
        return None
    return response if response.status_code == 200 else None


def _project_from_env() -> Optional[str]:
    for var in PROJECT_ENV_VARS:
        value = os.environ.get(var)
        if value:
            return value
    return None


def is_running_on_gcp() -> bool:
    """True when a project env var is set or the metadata server answers."""
    if _project_from_env():
        return True
    return _metadata("instance/id", timeout=1) is not None


def get_project_id() -> Optional[str]:
    project_id = _project_from_env()
    if project_id:
        return project_id
    response = _metadata("project/project-id", timeout=2)
    return response.text if response is not None else None


def get_secret(secret_name: str, version: str = "latest") -> Optional[str]:
    """
    Read one secret version as text.

    Args:
        secret_name: Secret id within the project
        version: Secret version, "latest" by default

    Returns:
        The decoded payload, or None off GCP or when the read fails
    """
    if not is_running_on_gcp():
        logger.debug(f"Local run, {secret_name} not read from Secret Manager")
        return None

    project_id = get_project_id()
    if not project_id:
        logger.error(f"No GCP project id, cannot read secret {secret_name}")
        return None

    try:
        from google.cloud import secretmanager
    except ImportError:
        logger.error("google-cloud-secret-manager is required on GCP (pip install google-cloud-secret-manager)")
        return None

    path = f"projects/{project_id}/secrets/{secret_name}/versions/{version}"
    try:
        client = secretmanager.SecretManagerServiceClient()
        response = client.access_secret_version(request={"name": path}, timeout=10)
    except Exception as e:
        logger.error(f"Secret {secret_name} could not be read: {e}")
        return None

    logger.info(f"Loaded secret {secret_name}")
    return response.payload.data.decode("UTF-8")


def _json_secret(secret_name: str) -> Optional[Dict[str, Any]]:
    raw = get_secret(secret_name)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Secret {secret_name} is not valid JSON: {e}")
        return None


def get_ig_credentials() -> Optional[Dict[str, Any]]:
    """{"api_key", "username", "password"[, "environment"]} or None."""
    return _json_secret(IG_CREDENTIALS_SECRET)


def get_google_sheets_credentials() -> Optional[Dict[str, Any]]:
    """Service account info for gspread, or None."""
    return _json_secret(SHEETS_CREDENTIALS_SECRET)
