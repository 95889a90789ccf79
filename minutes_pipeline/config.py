import asyncio
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8001
DEFAULT_MODEL_NAME = "gemini-2.5-flash"
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_PAYLOAD_MB = 18.0
DEFAULT_HARD_LIMIT_MB = 20.0
DEFAULT_CHUNKING_THRESHOLD_MB = 20.0
DEFAULT_CHUNKING_DURATION_SECONDS = 1200
DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_REQUEST_TIMEOUT = 600.0


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        self.host = os.environ.get("HOST", DEFAULT_HOST)
        self.port = int(os.environ.get("PORT", DEFAULT_PORT))
        self.debug = os.environ.get("DEBUG", "0") == "1"
        self.api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY") or ""
        self.model_name = os.environ.get("MODEL_NAME", DEFAULT_MODEL_NAME).strip() or DEFAULT_MODEL_NAME
        self.max_retries = int(os.environ.get("MAX_RETRIES", DEFAULT_MAX_RETRIES))
        self.request_timeout = float(os.environ.get("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT))
        self.max_payload_mb = float(os.environ.get("MAX_PAYLOAD_MB", DEFAULT_MAX_PAYLOAD_MB))
        self.hard_limit_mb = float(os.environ.get("HARD_LIMIT_MB", DEFAULT_HARD_LIMIT_MB))
        self.enable_chunking = _env_bool("ENABLE_CHUNKING", "true")
        self.chunking_threshold_mb = float(
            os.environ.get("CHUNKING_THRESHOLD_MB", DEFAULT_CHUNKING_THRESHOLD_MB)
        )
        self.chunking_duration_seconds = int(
            os.environ.get("CHUNKING_DURATION_SECONDS", DEFAULT_CHUNKING_DURATION_SECONDS)
        )
        self.max_concurrency = int(os.environ.get("MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY))
        self.inbox_dir = os.environ.get("INBOX_DIR", "./data/inbox")
        self.output_dir = os.environ.get("OUTPUT_DIR", "./data/minutes")
        self.infra = os.environ.get("INFRA", "local").lower()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "model_name": self.model_name,
            "has_api_key": bool(self.api_key),
            "max_retries": self.max_retries,
            "request_timeout": self.request_timeout,
            "max_payload_mb": self.max_payload_mb,
            "hard_limit_mb": self.hard_limit_mb,
            "enable_chunking": self.enable_chunking,
            "chunking_threshold_mb": self.chunking_threshold_mb,
            "chunking_duration_seconds": self.chunking_duration_seconds,
            "max_concurrency": self.max_concurrency,
            "inbox_dir": self.inbox_dir,
            "output_dir": self.output_dir,
            "infra": self.infra,
        }


config = Config()


def get_config() -> Config:
    return config


def create_model_client(cfg: Config):
    """Create the model client from an immutable ClientConfig built once here.

    Uses lazy imports so the Gemini SDK is only loaded when a client is built.
    """
    from minutes_pipeline.adapters.gemini.model_client import GeminiModelClient, resolve_client_config

    client_config = resolve_client_config(cfg.model_name, cfg.api_key, cfg.request_timeout)
    client = GeminiModelClient(client_config)
    logger.info(f"Model client: {type(client).__name__} ({client.model_name()})")
    return client


def create_infra_adapters(cfg: Config):
    """Create collaborator adapters based on INFRA env var."""
    from minutes_pipeline.adapters.local.directory_recording_source import DirectoryRecordingSource
    from minutes_pipeline.adapters.local.json_document_store import JsonFileDocumentStore
    from minutes_pipeline.adapters.local.log_notifier import LogNotificationAdapter
    from minutes_pipeline.adapters.local.log_progress import LogProgressAdapter

    infra = cfg.infra

    if infra == "local":
        adapters = {
            "source": DirectoryRecordingSource(cfg.inbox_dir),
            "store": JsonFileDocumentStore(cfg.output_dir),
            "notifier": LogNotificationAdapter(),
            "progress": LogProgressAdapter(),
        }
    else:
        raise ValueError(f"Unknown INFRA: {infra!r}. Valid options: local")

    logger.info(f"Infra adapters: {infra} -> {', '.join(type(v).__name__ for v in adapters.values())}")
    return adapters


def build_pipeline(
    cfg: Config,
    client=None,
    adapters: Optional[dict] = None,
    shutdown: Optional[asyncio.Event] = None,
):
    """Wire the coordinator and batch use cases. Returns (process_meeting, process_recordings)."""
    from minutes_pipeline.audio_preparation import AudioPreparer
    from minutes_pipeline.dispatch import RequestDispatcher
    from minutes_pipeline.quality import QualityEvaluator
    from minutes_pipeline.reprocessing import Reprocessor
    from minutes_pipeline.response_parser import ResponseParser
    from minutes_pipeline.use_cases.process_meeting import ProcessMeetingUseCase
    from minutes_pipeline.use_cases.process_recordings import ProcessRecordingsUseCase

    client = client or create_model_client(cfg)
    adapters = adapters or create_infra_adapters(cfg)
    shutdown = shutdown or asyncio.Event()

    evaluator = QualityEvaluator()
    process_meeting = ProcessMeetingUseCase(
        preparer=AudioPreparer(
            max_payload_mb=cfg.max_payload_mb,
            hard_limit_mb=cfg.hard_limit_mb,
            enable_chunking=cfg.enable_chunking,
            chunking_threshold_mb=cfg.chunking_threshold_mb,
            chunking_duration_seconds=cfg.chunking_duration_seconds,
        ),
        dispatcher=RequestDispatcher(client, max_retries=cfg.max_retries, shutdown=shutdown),
        parser=ResponseParser(),
        evaluator=evaluator,
        reprocessor=Reprocessor(evaluator),
        progress=adapters["progress"],
        model_name=client.model_name(),
    )
    process_recordings = ProcessRecordingsUseCase(
        source=adapters["source"],
        process_meeting=process_meeting,
        store=adapters["store"],
        notifier=adapters["notifier"],
        shutdown=shutdown,
        max_concurrency=cfg.max_concurrency,
    )
    return process_meeting, process_recordings
