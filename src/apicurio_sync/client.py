from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_TIMEOUT_S, Auth, RegistryContext
from .errors import RegistryError, RegistryHTTPError, RegistryNotFound, RegistryUnavailable

logger = logging.getLogger(__name__)

API_PREFIX = "apis/registry/v2"

_CONTENT_TYPES = {
    ".json": "application/json",
    ".avsc": "application/json",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".proto": "application/x-protobuf",
    ".graphql": "application/graphql",
    ".graphqls": "application/graphql",
    ".xml": "application/xml",
    ".wsdl": "application/xml",
    ".xsd": "application/xml",
}


@dataclass(frozen=True)
class ArtifactMetadata:
    name: str | None = None
    description: str | None = None
    artifact_type: str | None = None
    labels: tuple[str, ...] = ()
    properties: dict[str, str] = field(default_factory=dict)
    content_type: str = "application/octet-stream"

    def has_editable_fields(self) -> bool:
        return bool(self.name or self.description or self.labels or self.properties)


def content_type_for(path: PurePath | str | None) -> str:
    if path is None:
        return "application/octet-stream"
    return _CONTENT_TYPES.get(PurePath(path).suffix.lower(), "application/octet-stream")


def _seg(value: str) -> str:
    return quote(value, safe="")


class RegistryClient:
    """
    Apicurio Registry v2 REST client bound to one explicit registry context.
    """

    def __init__(
        self,
        *,
        registry_url: str,
        auth: Auth | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.base_url = f"{self.registry_url}/{API_PREFIX}"
        self.auth = auth or Auth()
        self.timeout_s = timeout_s
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    @classmethod
    def from_context(cls, ctx: RegistryContext, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> "RegistryClient":
        return cls(registry_url=ctx.registry_url, auth=ctx.auth, timeout_s=timeout_s)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _auth_kwargs(self, headers: dict[str, str]) -> dict[str, Any]:
        if self.auth.kind == "basic" and self.auth.username:
            return {"auth": httpx.BasicAuth(self.auth.username, self.auth.password or "")}
        if self.auth.kind == "token" and self.auth.token:
            headers["Authorization"] = f"Bearer {self.auth.token}"
        return {}

    def request(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        if content is not None and json_body is not None:
            raise RegistryError("Pass only one of content/json_body.")
        url = f"{self.base_url}/{path.lstrip('/')}"

        req_headers = dict(headers or {})
        extra = self._auth_kwargs(req_headers)

        logger.debug("%s %s", method.upper(), url)
        try:
            resp = self._http.request(
                method.upper(),
                url,
                params=params,
                json=json_body,
                content=content,
                headers=req_headers,
                **extra,
            )
        except httpx.HTTPError as e:
            raise RegistryUnavailable(f"Request to {url} failed: {e}") from e

        if resp.status_code == 404:
            raise RegistryNotFound(f"Not found: {method.upper()} {path}")
        if resp.status_code >= 500:
            raise RegistryUnavailable(f"Registry returned HTTP {resp.status_code} for {method.upper()} {path}")
        if resp.status_code >= 400:
            raise RegistryHTTPError(resp.status_code, resp.text)
        return resp

    def _get_json(self, path: str) -> Any:
        resp = self.request(method="GET", path=path, headers={"Accept": "application/json"})
        try:
            return resp.json()
        except ValueError as e:
            raise RegistryError(f"Registry returned invalid JSON for {path}") from e

    @staticmethod
    def _version_from(data: Any, *, what: str) -> str:
        version = data.get("version") if isinstance(data, dict) else None
        if isinstance(version, bool) or not isinstance(version, (str, int)) or not str(version).strip():
            raise RegistryError(f"Registry response for {what} has no version.")
        return str(version).strip()

    def system_info(self) -> dict[str, Any]:
        data = self._get_json("system/info")
        if not isinstance(data, dict):
            raise RegistryError("Registry returned an unexpected system info payload.")
        return data

    def get_latest_version(self, group: str, artifact_id: str) -> str:
        data = self._get_json(f"groups/{_seg(group)}/artifacts/{_seg(artifact_id)}/meta")
        return self._version_from(data, what=f"{group}/{artifact_id}")

    def get_version(self, group: str, artifact_id: str, version: str) -> str:
        data = self._get_json(f"groups/{_seg(group)}/artifacts/{_seg(artifact_id)}/versions/{_seg(version)}/meta")
        return self._version_from(data, what=f"{group}/{artifact_id}@{version}")

    def get_version_content(self, group: str, artifact_id: str, version: str) -> bytes:
        resp = self.request(
            method="GET",
            path=f"groups/{_seg(group)}/artifacts/{_seg(artifact_id)}/versions/{_seg(version)}",
        )
        return resp.content

    def upload_artifact(
        self,
        group: str,
        artifact_id: str,
        content: bytes,
        metadata: ArtifactMetadata | None = None,
    ) -> str:
        metadata = metadata or ArtifactMetadata()
        headers = {
            "X-Registry-ArtifactId": artifact_id,
            "Content-Type": metadata.content_type,
            "Accept": "application/json",
        }
        if metadata.artifact_type:
            headers["X-Registry-ArtifactType"] = metadata.artifact_type

        resp = self.request(
            method="POST",
            path=f"groups/{_seg(group)}/artifacts",
            params={"ifExists": "RETURN_OR_UPDATE"},
            content=content,
            headers=headers,
        )
        try:
            data = resp.json()
        except ValueError as e:
            raise RegistryError(f"Registry returned invalid JSON after uploading {group}/{artifact_id}") from e
        version = self._version_from(data, what=f"{group}/{artifact_id}")

        if metadata.has_editable_fields():
            body: dict[str, Any] = {
                "labels": list(metadata.labels),
                "properties": dict(metadata.properties),
            }
            if metadata.name is not None:
                body["name"] = metadata.name
            if metadata.description is not None:
                body["description"] = metadata.description
            self.request(
                method="PUT",
                path=f"groups/{_seg(group)}/artifacts/{_seg(artifact_id)}/versions/{_seg(version)}/meta",
                json_body=body,
            )
        return version
