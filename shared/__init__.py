"""Building blocks shared by the booking and finance apps.

`domain` holds value objects, base event types and the error taxonomy,
`application` the unit of work and message bus, `infrastructure` the
Django/DRF adapters (encrypted fields, API exception handler).
"""
