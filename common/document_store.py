import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Protocol

from qdrant_client import QdrantClient
from qdrant_client.http.models import Distance, PointStruct, VectorParams


logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Unsubscribe = Callable[[], None]

_PATH_KEY = "_path"


def news_path(namespace: str, country: str, day: str) -> str:
    return f"news/v2/{namespace}/{country.strip().lower()}/daily/{day}"


class DocumentStore(Protocol):
    def get(self, path: str) -> Optional[Document]: ...

    def set(self, path: str, document: Document, merge: bool = False) -> None: ...

    def subscribe(
        self,
        path: str,
        on_change: Callable[[Optional[Document]], None],
        on_error: Callable[[Exception], None],
    ) -> Unsubscribe: ...


class QdrantDocumentStore:
    """Key-value documents on top of a Qdrant collection.

    One point per path; the document is the point payload. Vectors are a
    single placeholder dimension since points are only addressed by id.
    """

    def __init__(self, client: QdrantClient, collection: str, poll_interval_s: float = 30.0) -> None:
        self._client = client
        self._collection = collection
        self._poll_interval_s = poll_interval_s

    @classmethod
    def connect(cls, host: str, port: int, collection: str, poll_interval_s: float = 30.0) -> "QdrantDocumentStore":
        return cls(QdrantClient(host=host, port=port), collection, poll_interval_s)

    def ensure_collection(self) -> None:
        if not self._client.collection_exists(self._collection):
            self._client.create_collection(
                collection_name=self._collection,
                vectors_config=VectorParams(size=1, distance=Distance.DOT),
            )

    @staticmethod
    def point_id(path: str) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, path))

    def get(self, path: str) -> Optional[Document]:
        pts = self._client.retrieve(
            collection_name=self._collection,
            ids=[self.point_id(path)],
            with_payload=True,
            with_vectors=False,
        )
        if not pts:
            return None
        payload = dict(pts[0].payload or {})
        payload.pop(_PATH_KEY, None)
        return payload

    def set(self, path: str, document: Document, merge: bool = False) -> None:
        pid = self.point_id(path)
        if merge and self.get(path) is not None:
            # top-level merge: keys in `document` replace stored keys whole
            self._client.set_payload(
                collection_name=self._collection,
                payload=dict(document),
                points=[pid],
            )
            return
        self._client.upsert(
            collection_name=self._collection,
            points=[PointStruct(id=pid, vector=[0.0], payload={**document, _PATH_KEY: path})],
        )

    def subscribe(
        self,
        path: str,
        on_change: Callable[[Optional[Document]], None],
        on_error: Callable[[Exception], None],
        interval_s: Optional[float] = None,
    ) -> Unsubscribe:
        """Poll `path` and call `on_change` with the first value and every
        later change. Must be called from a running event loop."""
        interval = interval_s if interval_s is not None else self._poll_interval_s
        missing = object()

        async def poll() -> None:
            last: Any = missing
            while True:
                try:
                    doc = await asyncio.to_thread(self.get, path)
                except Exception as e:
                    on_error(e)
                else:
                    if last is missing or doc != last:
                        last = doc
                        on_change(doc)
                await asyncio.sleep(interval)

        task = asyncio.get_running_loop().create_task(poll())
        logger.info("Subscribed to document", extra={"trace_id": "", "path": path, "interval_s": interval})

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe
