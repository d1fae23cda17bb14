from .references import extract_record_id, create_record_url, DEFAULT_BASE_URL
from .livingapps import (
    AppIds, GatewayConfig, GatewayError, LivingAppsGateway, RecordCollection,
    normalize_record_map, normalize_single_record, validate_record_id
)

__all__ = [
    'extract_record_id', 'create_record_url', 'DEFAULT_BASE_URL',
    'AppIds', 'GatewayConfig', 'GatewayError', 'LivingAppsGateway',
    'RecordCollection', 'normalize_record_map', 'normalize_single_record',
    'validate_record_id'
]
