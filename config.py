# config.py
# Environment driven settings for the stages and the driver.
import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_CHUNK_COUNT = 3
DEFAULT_STORAGE_DIR = '/storage'
DEFAULT_SCHEME = 'file'
DEFAULT_REGION = 'us-east-1'
DEFAULT_REQUEST_TIMEOUT = 600


def _split_list(value):
    if value is None:
        return None
    return [item.strip() for item in value.split(',') if item.strip()]


def parse_chunk_count(value):
    """Return `value` as a positive int, raising ValueError otherwise."""
    if isinstance(value, bool):
        raise ValueError(f"chunk_count must be a positive integer, got {value!r}")
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"chunk_count must be a positive integer, got {value!r}")
    if count <= 0 or (isinstance(value, float) and value != count):
        raise ValueError(f"chunk_count must be a positive integer, got {value!r}")
    return count


@dataclass
class PipelineConfig:
    chunk_count: int = DEFAULT_CHUNK_COUNT
    # None means "not configured"; an empty list is a valid explicit value
    source_refs: Optional[List[str]] = None
    default_bucket: Optional[str] = None
    default_scheme: str = DEFAULT_SCHEME
    storage_dir: str = DEFAULT_STORAGE_DIR
    s3_endpoint_url: Optional[str] = None
    s3_region: str = DEFAULT_REGION
    log_level: str = 'INFO'


@dataclass
class DriverConfig:
    splitter_url: str = 'http://127.0.0.1:8080'
    mapper_urls: List[str] = field(default_factory=lambda: ['http://127.0.0.1:8081'])
    reducer_url: str = 'http://127.0.0.1:8082'
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


def load_config(environ=None):
    env = os.environ if environ is None else environ

    source_refs = env.get('PIPELINE_SOURCE_REFS')
    return PipelineConfig(
        chunk_count=parse_chunk_count(env.get('PIPELINE_CHUNK_COUNT', DEFAULT_CHUNK_COUNT)),
        source_refs=_split_list(source_refs),
        default_bucket=env.get('PIPELINE_DEFAULT_BUCKET') or None,
        default_scheme=env.get('PIPELINE_DEFAULT_SCHEME', DEFAULT_SCHEME),
        storage_dir=env.get('STORAGE_DIR', DEFAULT_STORAGE_DIR),
        s3_endpoint_url=env.get('S3_ENDPOINT_URL') or None,
        s3_region=env.get('AWS_REGION', DEFAULT_REGION),
        log_level=env.get('LOG_LEVEL', 'INFO').upper(),
    )


def load_driver_config(environ=None):
    env = os.environ if environ is None else environ
    defaults = DriverConfig()

    mapper_urls = _split_list(env.get('MAPPER_URLS')) or defaults.mapper_urls
    return DriverConfig(
        splitter_url=env.get('SPLITTER_URL', defaults.splitter_url),
        mapper_urls=mapper_urls,
        reducer_url=env.get('REDUCER_URL', defaults.reducer_url),
        request_timeout=float(env.get('REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT)),
    )
