import warnings
from typing import Annotated, ClassVar, override

from pydantic import AfterValidator, BaseModel, Field, SecretStr, field_validator
from pydantic_file_secrets import FileSecretsSettingsSource, SettingsConfigDict
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    YamlConfigSettingsSource,
)

from stretch.types.general import CacheTTL, LogLevel
from stretch.utils.general import CommentedSettings

# Filter warnings about secrets because they're optional
warnings.filterwarnings(
    action="ignore", message='directory "/run/secrets" does not exist'
)
warnings.filterwarnings(
    action="ignore", message='directory "config/secrets" does not exist'
)


class ConnectionSettings(BaseModel):
    """Settings for one named Elasticsearch connection."""

    hosts: Annotated[
        list[str], Field(description="Elasticsearch node URLs for this connection.")
    ] = ["http://localhost:9200"]
    username: str | None = None
    password: SecretStr | None = None
    cloud_id: Annotated[
        str | None, Field(description="Elastic Cloud deployment ID.")
    ] = None
    api_key: SecretStr | None = None
    ssl_verification: Annotated[
        bool, Field(description="Verify TLS certificates of the cluster.")
    ] = True
    request_timeout: Annotated[
        float,
        Field(description="Time in seconds before a request should time out."),
    ] = 10
    max_retries: Annotated[
        int,
        Field(description="Number of retries before declaring a request failed."),
    ] = 3


class QuerySettings(BaseModel):
    """Defaults applied to query construction."""

    default_size: Annotated[
        int, Field(description="Page size used when paginating without one.")
    ] = 10
    max_size: Annotated[
        int, Field(description="Largest size a query may request; larger is clamped.")
    ] = 10_000


class AggregationSettings(BaseModel):
    """Defaults applied to aggregation construction."""

    max_buckets: Annotated[
        int,
        Field(description="Largest bucket size an aggregation may request."),
    ] = 10_000


class LogSettings(BaseModel):
    """Settings for query logging."""

    log_queries: Annotated[
        bool, Field(description="Log every request body sent to Elasticsearch.")
    ] = False
    log_slow_queries: Annotated[
        bool, Field(description="Log a warning for queries over the threshold.")
    ] = True
    slow_query_threshold: Annotated[
        int, Field(description="Time in milliseconds above which a query is slow.")
    ] = 1000


class CacheSettings(BaseModel):
    """Package-wide cache defaults, overridable per builder."""

    enabled: Annotated[
        bool, Field(description="Cache query results unless a builder says otherwise.")
    ] = False
    clear: Annotated[
        bool, Field(description="Forget the cached entry before every read.")
    ] = False
    ttl: Annotated[
        CacheTTL,
        Field(
            description="Seconds to cache for, or a [fresh, stale] pair for stale-while-revalidate."
        ),
    ] = (300, 600)
    prefix: Annotated[str, Field(description="Prefix of every cache key.")] = (
        "stretch:"
    )
    store: Annotated[
        str, Field(description="Cache store to use (memory or redis).")
    ] = "memory"

    @field_validator("ttl")
    @classmethod
    def check_ttl(cls, value: CacheTTL) -> CacheTTL:
        """Ensure the ttl is positive and a pair is ordered fresh <= stale."""
        return validate_ttl(value)


def validate_ttl(value: CacheTTL) -> CacheTTL:
    """Validate a single or [fresh, stale] cache ttl."""
    if isinstance(value, int):
        if value <= 0:
            raise ValueError("Cache ttl must be a positive number of seconds.")
        return value
    fresh, stale = value
    if fresh < 0 or stale <= 0 or fresh > stale:
        raise ValueError(
            f"Cache ttl pair must be [fresh, stale] with 0 <= fresh <= stale, got {list(value)}."
        )
    return (fresh, stale)


class RedisSettings(BaseModel):
    """Redis client initialization settings."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: SecretStr | None = None
    ssl_enabled: bool = False
    attempts: Annotated[
        int,
        Field(
            description="Number of attempts to accomplish operation before considering it failed."
        ),
    ] = 3
    timeout: Annotated[
        float, Field(description="Time before a redis operation is considered failed.")
    ] = 5
    compress: Annotated[
        bool, Field(description="Compress cached values with zstd.")
    ] = True


def uppercase(value: str) -> str:
    """Make a string uppercase."""
    return value.upper()


class GeneralConfig(CommentedSettings):
    """General stretch config."""

    log_level: Annotated[
        LogLevel,
        AfterValidator(uppercase),
    ] = Field(
        default="INFO",
        description="Level of logs to print.",
    )
    default_connection: Annotated[
        str, Field(description="Connection used when none is named.")
    ] = "default"
    connections: dict[str, ConnectionSettings] = Field(
        description="Named Elasticsearch connections.",
        default_factory=lambda: {"default": ConnectionSettings()},
    )

    query: QuerySettings = QuerySettings()
    aggregations: AggregationSettings = AggregationSettings()
    log: LogSettings = LogSettings()
    cache: CacheSettings = CacheSettings()
    redis: RedisSettings = RedisSettings()

    # Weird override happening here, see https://github.com/makukha/pydantic-file-secrets for an explanation
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(  # pyright:ignore[reportIncompatibleVariableOverride] This is the intended pattern
        case_sensitive=False,
        env_prefix="STRETCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config/config.yaml",
        yaml_file_encoding="utf-8",
        secrets_dir=["config/secrets", "/run/secrets"],
        secrets_nested_delimiter="__",
    )

    @classmethod
    @override
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Ensure proper setting priority order."""
        return (
            env_settings,
            FileSecretsSettingsSource(file_secret_settings),
            file_secret_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


CONFIG = GeneralConfig()
