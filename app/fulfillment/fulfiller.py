from app.config.settings import Settings
from app.database.models import DocumentCollection, FileEntry, OcrRecord
from app.database.repositories.collection_repository import CollectionRepository
from app.database.repositories.entitlement_repository import EntitlementRepository
from app.database.repositories.quota_repository import QuotaRepository
from app.fulfillment.exceptions import DocumentNotFoundError
from app.fulfillment.indexing import BaseIndexingNotifier, IndexingNotifierFactory
from app.fulfillment.models import OcrStatus
from app.logging.logger import Log
from app.ocr.dispatcher import OcrDispatchService
from app.ocr.factory import build_provider_registry
from app.ocr.metrics import OcrMetrics
from app.ocr.models import ExtractionRequest, ExtractionResult, ProviderType
from app.ocr.quota import QuotaGate
from app.ocr.tier_policy import DEFAULT_TIER, TierPolicy


class OcrFulfiller:
    """Runs OCR for one document of a collection and records the outcome.

    Flow: load -> short-circuit if completed -> mark processing -> dispatch
    -> persist record + collection status -> notify indexing.
    """

    def __init__(
        self,
        dispatcher: OcrDispatchService,
        collection_repo: CollectionRepository,
        entitlement_repo: EntitlementRepository,
        indexing_notifier: BaseIndexingNotifier,
    ) -> None:
        self._dispatcher = dispatcher
        self._collection_repo = collection_repo
        self._entitlement_repo = entitlement_repo
        self._indexing_notifier = indexing_notifier

    def fulfill(self, collection_id: str, document_id: str) -> OcrRecord:
        """OCR one document and update its collection's aggregate status.

        Dispatch failures never escape: they end as a FAILED OCR record.

        Raises:
            NotFoundError: if the collection, the member document or its OCR
                record does not exist. Raised before any state is changed.
        """
        collection = self._collection_repo.find_collection(collection_id)
        file_entry = collection.find_file(document_id)
        if file_entry is None:
            raise DocumentNotFoundError(
                f"Document {document_id} not found in collection {collection_id}"
            )
        record = self._collection_repo.find_ocr_record(document_id)

        if OcrStatus.parse(record.status) is OcrStatus.COMPLETED:
            Log.info(f"OCR already completed for document {document_id}, skipping")
            return record

        record.status = OcrStatus.PROCESSING.value
        self._collection_repo.save_ocr_record(record)

        request = self._build_request(collection, file_entry)
        tier = self._resolve_tier(collection.user_id)
        self._apply_result(record, request, collection.user_id, tier)

        status = self._collection_repo.save_outcome(record, collection_id)
        Log.info(
            f"Document {document_id} OCR {record.status}; "
            f"collection {collection_id} is now {status.value}"
        )

        if OcrStatus(record.status) is OcrStatus.COMPLETED:
            self._notify_indexing(collection, file_entry, record)
        return record

    @staticmethod
    def _build_request(collection: DocumentCollection, file_entry: FileEntry) -> ExtractionRequest:
        return ExtractionRequest(
            image_url=file_entry.file_url,
            mime_type=file_entry.file_type,
            document_id=file_entry.document_id,
            collection_id=collection.id,
            user_id=collection.user_id,
            fallback_allowed=True,
        )

    def _resolve_tier(self, user_id: str) -> str:
        try:
            tier = self._entitlement_repo.tier_for_user(user_id)
        except Exception as exc:
            Log.warning(f"Could not resolve tier for user {user_id}, using free tier: {exc}")
            return DEFAULT_TIER
        return tier or DEFAULT_TIER

    def _apply_result(
        self, record: OcrRecord, request: ExtractionRequest, user_id: str, tier: str
    ) -> None:
        try:
            result = self._dispatcher.process_ocr(request, user_id, tier)
        except Exception as exc:
            Log.error(f"OCR processing failed for document {record.document_id}: {exc}")
            record.status = OcrStatus.FAILED.value
            record.error_message = str(exc) or type(exc).__name__
            return

        if result.success:
            record.status = OcrStatus.COMPLETED.value
            record.extracted_text = result.extracted_text
            record.error_message = None
            Log.info(
                f"OCR completed for document {record.document_id} using "
                f"{result.provider_type}: {result.character_count} chars"
            )
        else:
            record.status = OcrStatus.FAILED.value
            record.error_message = self._failure_message(result)
            Log.warning(
                f"OCR failed for document {record.document_id}: {record.error_message}"
            )

    @staticmethod
    def _failure_message(result: ExtractionResult) -> str:
        return result.error_message or "OCR extraction failed"

    def _notify_indexing(
        self, collection: DocumentCollection, file_entry: FileEntry, record: OcrRecord
    ) -> None:
        try:
            self._indexing_notifier.notify_document_indexed(collection, file_entry, record)
        except Exception as exc:
            Log.warning(f"Indexing notification failed for document {record.document_id}: {exc}")


def build_fulfiller(settings: Settings, metrics: OcrMetrics | None = None) -> OcrFulfiller:
    """Build an OcrFulfiller with all production dependencies."""
    if metrics is None:
        metrics = OcrMetrics()
    registry = build_provider_registry(settings)
    quota = QuotaGate(QuotaRepository(), settings, metrics)
    tier_policy = TierPolicy.from_string(
        settings.ocr_tier_policy, ProviderType.from_code(settings.ocr_default_provider)
    )
    dispatcher = OcrDispatchService(registry, quota, metrics, tier_policy, settings)
    return OcrFulfiller(
        dispatcher=dispatcher,
        collection_repo=CollectionRepository(),
        entitlement_repo=EntitlementRepository(),
        indexing_notifier=IndexingNotifierFactory.create(settings),
    )
