from .config import (
    GatewayCredentials,
    KeyValueRow,
    McpHttpCredentials,
    McpSseCredentials,
    PlatformEndpoints,
    RequestOptions,
    SecretResolver,
)
from .errors import (
    ApiCallError,
    BodyParseError,
    ConfigurationError,
    McpTransportError,
    SuperiorApisError,
)
from .descriptors import (
    ApiDescriptor,
    DescriptorCache,
    SelectOption,
    decode_descriptor,
    encode_descriptor,
    extract_interface_id,
    list_api_options,
    list_method_options,
    resolve_version,
)
from .schema_fields import FieldSpec, body_fields, default_body, fields_for, parameters_fields
from .scenarios import NO_SCENARIO, NO_USE_SCENARIO, SCENARIO_ERROR, ScenarioLoader
from .assembler import ResolvedRequest, assemble_request, send_request
from .client import SuperiorApisClient
from .mcp import (
    McpCallOptions,
    McpClient,
    McpEnvelope,
    SseAccumulator,
    build_envelope,
    parse_header_lines,
    shape_messages,
)
