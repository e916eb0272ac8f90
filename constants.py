"""Constants for ThreatLens to eliminate string literal duplication."""

# Severity labels
SEVERITY_LOW = "Low"
SEVERITY_MEDIUM = "Medium"
SEVERITY_HIGH = "High"
SEVERITY_CRITICAL = "Critical"

# Explicit severity field values -> label
SEVERITY_FIELD_MAP = {
    "critical": SEVERITY_HIGH,
    "high": SEVERITY_HIGH,
    "4": SEVERITY_HIGH,
    "3": SEVERITY_HIGH,
    "medium": SEVERITY_MEDIUM,
    "moderate": SEVERITY_MEDIUM,
    "2": SEVERITY_MEDIUM,
    "low": SEVERITY_LOW,
    "info": SEVERITY_LOW,
    "1": SEVERITY_LOW,
    "0": SEVERITY_LOW,
}

# Severity label -> numeric priority (1..4)
PRIORITY_MAP = {
    "critical": 4, "4": 4,
    "high": 3, "3": 3,
    "medium": 2, "2": 2,
    "low": 1, "info": 1, "informational": 1, "1": 1, "0": 1,
}
DEFAULT_PRIORITY = 2

# Keyword bands used when no explicit severity field exists (checked in order)
SEVERITY_KEYWORD_BANDS = [
    (("critical", "fatal", "attack", "malware"), SEVERITY_HIGH),
    (("error", "failed", "blocked", "unauthorized"), SEVERITY_MEDIUM),
    (("warning", "alert"), SEVERITY_MEDIUM),
]

# Security relevance keywords (matched on whole tokens)
SECURITY_KEYWORDS = [
    "failed", "error", "unauthorized", "blocked", "denied", "attack",
    "malware", "suspicious", "breach", "intrusion", "exploit",
    "vulnerability", "trojan", "virus", "scan", "escalation",
    "exfiltration", "alert", "warning", "login", "authentication",
    "access", "permission", "firewall", "dropped",
]

# Structured-record field names
TIMESTAMP_FIELDS = ["timestamp", "time", "date", "datetime", "created", "modified", "when"]
EVENT_TYPE_FIELDS = ["event_type", "type", "event", "category", "action"]
DESCRIPTION_FIELDS = ["description", "message", "details", "summary", "info", "msg"]
SEVERITY_FIELDS = ["severity", "level", "priority", "risk"]
SOURCE_FIELDS = ["source", "host", "hostname", "computer", "device"]
IP_FIELDS = ["ip", "src", "source_ip", "src_ip", "client_ip", "remote_addr"]

DEFAULT_STRUCTURED_EVENT_TYPE = "Security Event"
TEXT_EVENT_TYPE = "Log Entry"
TEXT_DESCRIPTION_LIMIT = 200
WINDOWS_DESCRIPTION_LIMIT = 500
SYSLOG_DESCRIPTION_LIMIT = 500

# Free text timestamp patterns
TIMESTAMP_PATTERNS = [
    r"\d{4}-\d{2}-\d{2}[\sT]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?",
    r"\d{2}/\d{2}/\d{4}\s+\d{2}:\d{2}:\d{2}",
    r"\d{2}/\w{3}/\d{4}:\d{2}:\d{2}:\d{2}(?:\s[+-]\d{4})?",
    r"\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}",
]

# IOC categories
IOC_IP = "IP"
IOC_DOMAIN = "Domain"
IOC_HASH = "Hash"
IOC_EMAIL = "Email"

# Extensions
TEXT_EXTENSIONS = [".log", ".txt"]
STRUCTURED_EXTENSIONS = [".csv", ".json", ".jsonl", ".ndjson"]
WINDOWS_EVENT_EXTENSIONS = [".evtx", ".evt", ".xml"]
SESSION_EXTENSIONS = [".wtmp", ".utmp", ".btmp", ".lastlog"]
CAPTURE_EXTENSIONS = [".pcap", ".pcapng", ".cap"]

# MIME types
MIME_TYPES = {
    ".csv": "text/csv",
    ".json": "application/json",
    ".jsonl": "application/x-ndjson",
    ".ndjson": "application/x-ndjson",
    ".log": "text/plain",
    ".txt": "text/plain",
    ".syslog": "text/plain",
    ".xml": "application/xml",
    ".evtx": "application/x-ms-evtx",
    ".evt": "application/x-ms-evt",
    ".pcap": "application/vnd.tcpdump.pcap",
    ".pcapng": "application/x-pcapng",
    ".cap": "application/vnd.tcpdump.pcap",
}
DEFAULT_MIME = "application/octet-stream"

# How much of a file content sniffers may look at
SNIFF_BYTES = 4096
SNIFF_LINES = 20

# Model prompt sampling
PROMPT_EVENT_SAMPLE = 10
PROMPT_IOC_SAMPLE = 20

# Analysis caps
MAX_SECURITY_EVENTS = 10000
MAX_IOCS = 1000

# Environment Variables
ENV_CONFIG_PATH = "THREATLENS_CONFIG"
ENV_MODEL_BACKEND = "MODEL_BACKEND"
ENV_LOG_LEVEL = "THREATLENS_LOG_LEVEL"
