"""Built-in stage pipelines.

Each entry is a JSON-compatible dict parsed by ``PipelineRegistry.parse_pipeline``.
Project-local overrides in ``.jobtrack/pipelines/*.json`` use the same shape.
"""

from __future__ import annotations

from typing import Any

_SHARED_PREFIX: list[str] = [
    "Order Confirmed",
    "Pending Scope Approval",
    "Scope Approval Completed",
    "Pending Departmental Engagement",
    "Departmental Engagement Completed",
]

_POST_DELIVERY: list[str] = [
    "Pending Feedback",
    "Feedback Completed",
    "Completed",
    "Finished",
]

_PRODUCTION: dict[str, Any] = {
    "pipeline": "production",
    "display_name": "Production",
    "description": "Billable jobs: mockup, production, QC, photography, packaging and delivery.",
    "categories": ["Standard", "Emergency", "Corporate Job"],
    "stages": [
        *_SHARED_PREFIX,
        "Pending Mockup",
        "Mockup Completed",
        "Pending Proof Reading",
        "Proof Reading Completed",
        "Pending Production",
        "Production Completed",
        "Pending Quality Control",
        "Quality Control Completed",
        "Pending Photography",
        "Photography Completed",
        "Pending Packaging",
        "Packaging Completed",
        "Pending Delivery/Pickup",
        "Delivered",
        *_POST_DELIVERY,
    ],
    "initial_stage": "Order Confirmed",
    "entry_stage": "Pending Departmental Engagement",
    "terminal_stages": ["Delivered", *_POST_DELIVERY],
    "auto_advance": {
        "Proof Reading Completed": "Pending Production",
        "Packaging Completed": "Pending Delivery/Pickup",
    },
    "gates": {
        "mockup": "Pending Mockup",
        "production": "Pending Production",
        "production_watch": ["Pending Proof Reading", "Pending Production"],
        "delivery": "Pending Delivery/Pickup",
        "delivery_watch": ["Pending Packaging", "Pending Delivery/Pickup"],
    },
}

_QUOTE: dict[str, Any] = {
    "pipeline": "quote",
    "display_name": "Quote",
    "description": "Quote requests: scope, departmental input, quote request and client response.",
    "categories": ["Quote"],
    "stages": [
        *_SHARED_PREFIX,
        "Pending Quote Request",
        "Quote Request Completed",
        "Pending Send Response",
        "Response Sent",
        *_POST_DELIVERY,
    ],
    "initial_stage": "Order Confirmed",
    "entry_stage": "Pending Quote Request",
    "terminal_stages": list(_POST_DELIVERY),
    "auto_advance": {},
    "gates": {},
}

BUILT_IN_PIPELINES: dict[str, dict[str, Any]] = {
    "production": _PRODUCTION,
    "quote": _QUOTE,
}
