"""Tool Domains.

Each domain contains:
- Tool descriptors
- Handler implementations

Domains are isolated with no cross-domain calls or shared state.
"""

from domains.base import BaseAdapter, DomainToolExecutor


def load_all_domains(executor: DomainToolExecutor, latency_seconds: float = 0.0) -> list[BaseAdapter]:
    """
    Load and register all tool domains.

    This is called at startup to register every domain's tools and
    handlers with the executor.

    Returns:
        The registered domain adapters
    """
    from domains.clinic import register_clinic_domain

    return [register_clinic_domain(executor, latency_seconds=latency_seconds)]


__all__ = ["load_all_domains"]
