from __future__ import annotations

import logging
from threading import Lock
from typing import Any

import boto3
from botocore.config import Config

from app.core.config import Settings
from app.core.errors import ConfigurationError


class IotClientFactory:
    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._logger = logging.getLogger("app.iot")
        self._lock = Lock()
        self._clients: dict[str, Any] = {}
        self._client_config = Config(
            region_name=settings.aws_region,
            connect_timeout=settings.aws_iot_connect_timeout_seconds,
            read_timeout=settings.aws_iot_read_timeout_seconds,
            retries={"max_attempts": settings.aws_iot_max_attempts, "mode": "standard"},
        )

    @property
    def region(self) -> str:
        return self._settings.aws_region

    @property
    def account_id(self) -> str | None:
        return self._settings.aws_account_id

    def iot(self) -> Any:
        return self._get_or_create("iot")

    def iot_data(self) -> Any:
        if not self._settings.aws_iot_endpoint:
            raise ConfigurationError(
                "AWS_IOT_ENDPOINT is required for device shadow access"
            )
        return self._get_or_create("iot-data")

    def _get_or_create(self, service_name: str) -> Any:
        with self._lock:
            client = self._clients.get(service_name)
            if client is None:
                client = self._build(service_name)
                self._clients[service_name] = client
            return client

    def _build(self, service_name: str) -> Any:
        kwargs: dict[str, Any] = {
            "region_name": self._settings.aws_region,
            "config": self._client_config,
        }
        if self._settings.aws_access_key_id and self._settings.aws_secret_access_key:
            kwargs["aws_access_key_id"] = self._settings.aws_access_key_id
            kwargs["aws_secret_access_key"] = self._settings.aws_secret_access_key
        if service_name == "iot-data":
            endpoint = self._settings.aws_iot_endpoint or ""
            if not endpoint.startswith("https://"):
                endpoint = f"https://{endpoint}"
            kwargs["endpoint_url"] = endpoint
        self._logger.info(
            "creating aws client service=%s region=%s", service_name, self._settings.aws_region
        )
        return boto3.client(service_name, **kwargs)
