"""
Connector for the external demo parser service.

The parser accepts a demo as multipart upload, then streams results back:
event batches to /api/job/{job_id}/event/{name}, progress to
/api/job/callback/progress and the final state to /api/job/callback/completion.
"""

import logging
from pathlib import Path
from typing import Any

import httpx

from topfrag.core.config import ParserServiceConfig, get_config
from topfrag.integrations.exceptions import ParserServiceError

logger = logging.getLogger(__name__)

PROGRESS_CALLBACK_ENDPOINT = "/api/job/callback/progress"
COMPLETION_CALLBACK_ENDPOINT = "/api/job/callback/completion"
PARSE_DEMO_ENDPOINT = "/api/parse-demo"
UPLOAD_TIMEOUT = 300.0


class ParserServiceConnector:
    """Hands demos to the parser service over HTTP."""

    def __init__(self, config: ParserServiceConfig | None = None, client: httpx.Client | None = None):
        self.config = config or get_config().parser_service
        self.base_url = self.config.base_url.rstrip("/")
        self.progress_callback_url = self.config.app_url.rstrip("/") + PROGRESS_CALLBACK_ENDPOINT
        self.completion_callback_url = self.config.app_url.rstrip("/") + COMPLETION_CALLBACK_ENDPOINT
        self.parse_demo_url = self.base_url + PARSE_DEMO_ENDPOINT
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
        return self._client

    def check_health(self) -> None:
        """Raise ParserServiceError.service_unavailable unless /health answers 2xx."""
        try:
            response = self._http().get(f"{self.base_url}/health")
        except httpx.HTTPError as e:
            raise ParserServiceError.service_unavailable() from e

        if not response.is_success:
            raise ParserServiceError.service_unavailable()

    def is_healthy(self) -> bool:
        try:
            self.check_health()
            return True
        except ParserServiceError:
            return False

    def upload_demo(self, file_path: str | Path, job_uuid: str) -> dict[str, Any]:
        """
        Send a demo to the parser for processing.

        Args:
            file_path: Path of the stored .dem file
            job_uuid: Job the parser reports progress and events against

        Returns:
            The parser's JSON acknowledgement

        Raises:
            ParserServiceError: If the parser is down or rejects the upload
        """
        self.check_health()

        file_path = Path(file_path)
        data = {
            "job_id": job_uuid,
            "progress_callback_url": self.progress_callback_url,
            "completion_callback_url": self.completion_callback_url,
        }
        headers = {"X-API-Key": self.config.api_key, "Accept": "application/json"}

        try:
            with file_path.open("rb") as demo:
                response = self._http().post(
                    self.parse_demo_url,
                    data=data,
                    files={"demo_file": (file_path.name, demo, "application/octet-stream")},
                    headers=headers,
                    timeout=UPLOAD_TIMEOUT,
                )
        except (httpx.HTTPError, OSError) as e:
            raise ParserServiceError.upload_failed() from e

        if not response.is_success:
            raise ParserServiceError.upload_failed(status_code=response.status_code)

        logger.info(f"Uploaded {file_path.name} to parser for job {job_uuid}")
        try:
            return response.json()
        except ValueError:
            return {}
