"""
Resolver Module - Black Box Interface

Purpose: Decide whether a control-plane host needs an alternate address
Interface: AddressResolver.resolve(host) -> Optional[str]
Hidden: Name lookup mechanism, regional stamp domain table

Never raises; every failure degrades to "use the hostname directly".
"""

from .resolver import AddressResolver, stamp_hostname, system_lookup

__all__ = ["AddressResolver", "stamp_hostname", "system_lookup"]
