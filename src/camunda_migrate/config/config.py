"""Configuration management for Camunda Migration Tool."""

from typing import Optional, Dict, Any, List
from pathlib import Path
import os

from pydantic import BaseModel, Field, validator
import yaml
from dotenv import load_dotenv


DEFAULT_PAGE_SIZE = 100
DEFAULT_BATCH_SIZE = 100
DEFAULT_JOB_TYPE = 'migrator'
DISABLED = 'DISABLED'


def _validate_http_url(v: str) -> str:
    if not v.startswith(('http://', 'https://')):
        raise ValueError('URL must start with http:// or https://')
    return v.rstrip('/')


class SourceEngineConfig(BaseModel):
    """Configuration for the Camunda 7 REST API."""

    url: str = Field(..., description='Camunda 7 REST base URL, e.g. http://host:8080/engine-rest')
    username: Optional[str] = Field(default=None, description='Basic auth user')
    password: Optional[str] = Field(default=None, description='Basic auth password')
    timeout: int = Field(default=30, description='Request timeout in seconds')
    rate_limit_per_second: float = Field(
        default=50.0, description='API requests per second limit'
    )

    @validator('url')
    def validate_url(cls, v):
        """Validate source URL format."""
        return _validate_http_url(v)

    @validator('password')
    def validate_credentials(cls, v, values):
        """Basic auth needs both parts or neither."""
        if bool(values.get('username')) != bool(v):
            raise ValueError('username and password must be provided together')
        return v

    @validator('rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Validate rate limit is positive."""
        if v <= 0:
            raise ValueError('Rate limit must be positive')
        return v


class TargetEngineConfig(BaseModel):
    """Configuration for the Camunda 8 REST API."""

    url: str = Field(..., description='Camunda 8 REST base URL, e.g. http://host:8080')
    token: Optional[str] = Field(default=None, description='Static bearer token')
    client_id: Optional[str] = Field(default=None, description='OAuth client id')
    client_secret: Optional[str] = Field(default=None, description='OAuth client secret')
    oauth_url: Optional[str] = Field(default=None, description='OAuth token endpoint')
    audience: Optional[str] = Field(default=None, description='OAuth audience')
    timeout: int = Field(default=30, description='Request timeout in seconds')
    rate_limit_per_second: float = Field(
        default=50.0, description='API requests per second limit'
    )

    @validator('url')
    def validate_url(cls, v):
        """Validate target URL format."""
        return _validate_http_url(v)

    @validator('oauth_url')
    def validate_oauth_url(cls, v):
        """Validate token endpoint URL format."""
        if v is None:
            return v
        return _validate_http_url(v)

    @validator('rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Validate rate limit is positive."""
        if v <= 0:
            raise ValueError('Rate limit must be positive')
        return v


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    page_size: int = Field(
        default=DEFAULT_PAGE_SIZE, description='Items fetched from the source per page'
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        description='Mapping records buffered before a database flush',
    )
    job_type: str = Field(
        default=DEFAULT_JOB_TYPE,
        description='Job type activated to move migrated instances to their active elements',
    )
    validation_job_type: Optional[str] = Field(
        default=None,
        description=f'Execution listener type required on start events; '
        f'defaults to job_type, "{DISABLED}" turns the check off',
    )
    tenant_ids: List[str] = Field(
        default_factory=list, description='Tenants besides the default tenant to migrate'
    )
    save_skip_reason: bool = Field(
        default=True, description='Persist the reason an entity was skipped'
    )
    resume_window_seconds: int = Field(
        default=3600,
        description='How far behind the resume cursor the source is re-scanned',
    )
    transformers: List[str] = Field(
        default_factory=list,
        description='Additional transformers as "package.module:ClassName"',
    )
    disabled_transformers: List[str] = Field(
        default_factory=list, description='Names of built-in transformers to skip'
    )
    variable_interceptors: List[str] = Field(
        default_factory=list,
        description='Variable interceptors as "package.module:ClassName", run in order',
    )

    @validator('page_size', 'batch_size')
    def validate_sizes(cls, v):
        """Validate page and batch sizes are positive."""
        if v <= 0:
            raise ValueError('Page and batch sizes must be positive')
        return v

    @validator('resume_window_seconds')
    def validate_resume_window(cls, v):
        """Validate resume window is not negative."""
        if v < 0:
            raise ValueError('Resume window must not be negative')
        return v

    @validator('transformers', 'variable_interceptors', each_item=True)
    def validate_extension_path(cls, v):
        """Validate transformer and interceptor import path format."""
        module, _, attr = v.partition(':')
        if not module or not attr:
            raise ValueError(f'Extensions must be given as "module:ClassName": {v}')
        return v

    @property
    def effective_validation_job_type(self) -> Optional[str]:
        """Listener type to enforce, or None when the check is disabled."""
        job_type = self.validation_job_type or self.job_type
        if job_type == DISABLED:
            return None
        return job_type


class DatabaseConfig(BaseModel):
    """Persistence configuration."""

    url: str = Field(
        default='sqlite:///migrator.db', description='Mapping table database URL'
    )
    history_url: Optional[str] = Field(
        default=None,
        description='Camunda 8 secondary storage URL for history records; '
        'defaults to the mapping database',
    )
    table_prefix: str = Field(default='', description='Prefix for migrator tables')
    auto_ddl: bool = Field(default=True, description='Create missing tables on start')
    echo: bool = Field(default=False, description='Log emitted SQL')

    @validator('table_prefix')
    def validate_table_prefix(cls, v):
        """Table prefix may only contain identifier characters."""
        if v and not v.replace('_', '').isalnum():
            raise ValueError('table_prefix may only contain letters, digits and "_"')
        return v


class HistoryConfig(BaseModel):
    """History migration settings."""

    cleanup_ttl_days: Optional[int] = Field(
        default=180,
        description='Days after end date when migrated history is cleaned up; '
        '0 or null disables the cleanup date',
    )

    @validator('cleanup_ttl_days')
    def validate_cleanup_ttl(cls, v):
        """Validate cleanup TTL is not negative."""
        if v is not None and v < 0:
            raise ValueError('cleanup_ttl_days must not be negative')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(default=None, description='Console log format')

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for Camunda Migration Tool."""

    source: SourceEngineConfig = Field(..., description='Camunda 7 engine')
    target: TargetEngineConfig = Field(..., description='Camunda 8 cluster')
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description='Persistence settings'
    )
    history: HistoryConfig = Field(
        default_factory=HistoryConfig, description='History migration settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        tenant_ids = os.getenv('MIGRATOR_TENANT_IDS')

        config_data = {
            'source': {
                'url': os.getenv('C7_REST_URL'),
                'username': os.getenv('C7_USERNAME'),
                'password': os.getenv('C7_PASSWORD'),
            },
            'target': {
                'url': os.getenv('C8_REST_URL'),
                'token': os.getenv('C8_TOKEN'),
                'client_id': os.getenv('C8_CLIENT_ID'),
                'client_secret': os.getenv('C8_CLIENT_SECRET'),
                'oauth_url': os.getenv('C8_OAUTH_URL'),
                'audience': os.getenv('C8_AUDIENCE'),
            },
            'migration': {
                'page_size': int(os.getenv('MIGRATOR_PAGE_SIZE', DEFAULT_PAGE_SIZE)),
                'batch_size': int(os.getenv('MIGRATOR_BATCH_SIZE', DEFAULT_BATCH_SIZE)),
                'job_type': os.getenv('MIGRATOR_JOB_TYPE', DEFAULT_JOB_TYPE),
                'validation_job_type': os.getenv('MIGRATOR_VALIDATION_JOB_TYPE'),
                'tenant_ids': [t.strip() for t in tenant_ids.split(',') if t.strip()]
                if tenant_ids
                else None,
                'save_skip_reason': os.getenv('MIGRATOR_SAVE_SKIP_REASON', 'true').lower()
                == 'true',
            },
            'database': {
                'url': os.getenv('MIGRATOR_DB_URL'),
                'history_url': os.getenv('C8_DB_URL'),
                'table_prefix': os.getenv('MIGRATOR_TABLE_PREFIX'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'url': 'http://localhost:8080/engine-rest',
                'username': 'demo',
                'password': 'demo',
                'timeout': 30,
            },
            'target': {
                'url': 'http://localhost:8088',
                'token': 'your-camunda-8-access-token',
                'timeout': 30,
            },
            'migration': {
                'page_size': DEFAULT_PAGE_SIZE,
                'batch_size': DEFAULT_BATCH_SIZE,
                'job_type': DEFAULT_JOB_TYPE,
                'tenant_ids': [],
                'save_skip_reason': True,
                'resume_window_seconds': 3600,
            },
            'database': {
                'url': 'sqlite:///migrator.db',
                'table_prefix': '',
                'auto_ddl': True,
            },
            'history': {
                'cleanup_ttl_days': 180,
            },
            'logging': {
                'level': 'INFO',
                'file': 'migration.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
