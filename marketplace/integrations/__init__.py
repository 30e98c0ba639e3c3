"""marketplace.integrations — External service gateway modules.

All outbound HTTP calls to the adapter must go through a gateway in this
package, never via bare `requests` calls in services.

Every call is:
  - Authenticated when it mutates state (bearer token injected by the gateway)
  - Attempted exactly once, with a bounded timeout
  - Mapped onto the lifecycle error taxonomy on failure

Current gateways:
  adapter_gateway.AdapterGateway — blockchain adapter REST API
"""
