"""Bazaar negotiation desk: client-side coordination for bulk price negotiations."""
