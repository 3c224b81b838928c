# =============================================================================
# OCR Extraction
# =============================================================================

OCR_PAGES_PER_CALL = 5  # Provider hard limit for files:annotate
PAGE_PROBE_STRIDE = 10  # Forward stride while searching for the last page
DEFAULT_MAX_PAGES = 100

# Page caps per document category
MAX_PAGES_BY_CATEGORY = {
    "invoice": 20,
    "bank_statement": 50,
    "identity": 10,
    "registry": 20,
    "collateral": 20,
}

OCR_COST_PER_PAGE_USD = 0.0015
OCR_LANGUAGE_HINTS = ("ja", "en")
TOKEN_TEXT_HEADER = "--- individual tokens ---"

# Provider error message that marks a page index past the end of the file
INVALID_PAGES_SIGNAL = "invalid pages"

SUPPORTED_IMAGE_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/webp",
    "image/tiff",
}
SUPPORTED_PAGED_TYPES = {"application/pdf", "image/tiff-multipage"}

MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024


# =============================================================================
# External Service Timeouts (seconds)
# =============================================================================

OCR_REQUEST_TIMEOUT_SECONDS = 60
LLM_REQUEST_TIMEOUT_SECONDS = 60
SEARCH_REQUEST_TIMEOUT_SECONDS = 15
RECORD_STORE_TIMEOUT_SECONDS = 30


# =============================================================================
# Retry Configuration
# =============================================================================

RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_DEFAULT_WAIT_SECONDS = 20.0


# =============================================================================
# Pipeline
# =============================================================================

MAX_STAGE_CONCURRENCY = 4
DEFAULT_LLM_MODEL = "gpt-4o"
LLM_MAX_TOKENS = 2000
LLM_PROMPT_TEXT_MAX_CHARS = 30000


# =============================================================================
# Reconciliation
# =============================================================================

AMOUNT_TOLERANCE = 1000  # yen
SPLIT_SUM_MAX_PARTS = 2
CONTAINMENT_MIN_LENGTH = 2

# Legal-entity tokens ignored when comparing company names (compared after NFKC)
LEGAL_ENTITY_TOKENS = (
    "株式会社",
    "有限会社",
    "合同会社",
    "合資会社",
    "合名会社",
    "一般社団法人",
    "一般財団法人",
    "(株)",
    "(有)",
    "(同)",
    "(カ)",
    "(ユ)",
    "カ)",
    "ユ)",
    "(カ",
    "(ユ",
    "㈱",
    "㈲",
    "corporation",
    "corp.",
    "corp",
    "co.,ltd.",
    "co.,ltd",
    "co.ltd.",
    "co.ltd",
    "ltd.",
    "ltd",
    "inc.",
    "inc",
    "llc",
    "k.k.",
    "g.k.",
)


# =============================================================================
# Bank Statement Analysis
# =============================================================================

GAMBLING_KEYWORDS = (
    "パチンコ",
    "スロット",
    "競馬",
    "競輪",
    "競艇",
    "ボートレース",
    "オートレース",
    "カジノ",
    "ウインズ",
    "toto",
)
LARGE_WITHDRAWAL_THRESHOLD = 500_000
SAME_DAY_TRANSFER_TOLERANCE = 100
CROSS_ACCOUNT_TOLERANCE = 1000
CROSS_ACCOUNT_MAX_DAYS = 1

# Other factoring providers; transactions with them indicate double financing
FACTORING_COMPANY_NAMES = (
    "ビートレーディング",
    "アクセルファクター",
    "OLTA",
    "ペイトナー",
    "QuQuMo",
    "ベストファクター",
    "日本中小企業金融サポート機構",
    "トップ・マネジメント",
    "メンターキャピタル",
    "えんfactor",
)


# =============================================================================
# Enrichment
# =============================================================================

SEARCH_RESULTS_PER_QUERY = 5
SEARCH_RELEVANCE_THRESHOLD = 80  # rapidfuzz partial_ratio
NEGATIVE_NEWS_KEYWORDS = ("詐欺", "逮捕", "容疑", "被害")
COMPANY_VERIFIED_THRESHOLD = 50

# Aggregator domains never treated as an official company website
AGGREGATOR_DOMAINS = (
    "wikipedia.org",
    "baseconnect.in",
    "houjin.info",
    "houjin-bangou.nta.go.jp",
    "salesnow.jp",
    "indeed.com",
    "en-gage.net",
    "doda.jp",
    "mynavi.jp",
    "rikunabi.com",
    "linkedin.com",
    "facebook.com",
    "x.com",
    "twitter.com",
    "instagram.com",
)


# =============================================================================
# Scoring
# =============================================================================

STABILITY_MATERIALITY_THRESHOLD = 100_000


# =============================================================================
# Error Handling
# =============================================================================

ERROR_BODY_MAX_CHARS = 200
