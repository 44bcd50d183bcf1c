"""Declarative compliance rules.

Loaded once by core/compliance_engine.py.  Platform flags are only
enforced where the engine has a concrete check for them; the rest serve as
human-readable documentation of each platform's terms.
"""

PLATFORM_RULES = {
    "github": {
        "requires_user_agent": True,
        "no_automated_accounts": True,
        "rate_limit": True,
    },
    "fiverr": {
        "one_account_per_person": True,
        "no_automated_communication": True,
        "deliver_as_described": True,
    },
    "upwork": {
        "real_individuals_only": True,
        "no_automated_bidding": True,
        "personal_communication": True,
    },
}

LEGAL_RULES = {
    "no_unauthorized_access": True,
    "no_fraud": True,
    "respect_intellectual_property": True,
    "data_privacy": True,
    "no_spam": True,
}

# Action types that always need an affiliate/sponsorship disclosure.
DISCLOSURE_ACTION_TYPES = ("post-affiliate-link", "sponsored-content")
