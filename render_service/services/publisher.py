from __future__ import annotations

import logging
from typing import Optional

from render_service.clients.s3_storage import S3StorageClient
from render_service.services.retry import RetryExecutor
from render_service.storage.cache import RenderCache, final_artifact_key


class OutputPublisher:
    def __init__(
        self,
        storage: S3StorageClient,
        cache: RenderCache,
        retry: RetryExecutor,
        signed_url_ttl: int,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.retry = retry
        self.signed_url_ttl = signed_url_ttl
        self.log = logger or logging.getLogger(__name__)

    def persist(self, project_id: str, local_path: str, digest: str | None) -> str:
        """Upload the finished artifact and write it through to the manifest cache."""
        key = self.retry.run(
            lambda: self.cache.store_final(project_id, local_path),
            label=f"upload {final_artifact_key(project_id)}",
        )
        if digest:
            self.cache.write_manifest(digest, project_id)
        return key

    def issue_url(self, project_id: str, publish: bool) -> str:
        key = final_artifact_key(project_id)
        if publish:
            # making an already public object public again is a no-op
            return self.retry.run(lambda: self.storage.make_public(key), label=f"publish {key}")
        # a draft must not stay reachable through an earlier public grant
        if self.storage.is_public(key):
            self.retry.run(lambda: self.storage.make_private(key), label=f"unpublish {key}")
        return self.storage.signed_url(key, self.signed_url_ttl)
