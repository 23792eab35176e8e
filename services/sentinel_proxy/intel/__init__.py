# Discovery + failover tracking
from .models import (
    PrimaryAddress,
    PrimarySnapshot,
    Epoch,
    PipeResult,
    SessionEnd,
)
from .primary_state import PrimaryState
from .discovery import (
    DiscoveryClient,
    DiscoveryError,
    MalformedReplyError,
    parse_sentinel_reply,
    split_host_port,
)
from .tracker import PrimaryTracker

# Proxying
from .pipe import pipe
from .proxy import ProxyServer, ProxySession

# Service wiring
from .events import FailoverPublisher
from .health_api import HealthAPIHandler
from .orchestrator import ProxyOrchestrator
