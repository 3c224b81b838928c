from factoring_review.pipeline.ports.llm_port import LLMPort
from factoring_review.pipeline.ports.ocr_port import OCRPort, PagedAnnotation, PageText
from factoring_review.pipeline.ports.record_store_port import RecordStorePort
from factoring_review.pipeline.ports.search_port import SearchPort

__all__ = [
    "LLMPort",
    "OCRPort",
    "PagedAnnotation",
    "PageText",
    "RecordStorePort",
    "SearchPort",
]
