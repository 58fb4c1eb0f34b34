"""
Permissions and Role Defaults Configuration
This config defines the permission catalog and the baseline grant matrix for
each role. Used by the seed script to populate the permissions and
role_permissions tables, and by the access gate for the page -> key mapping.
"""

# Dashboard pages guarded by a permission key
PAGES = {
    "dashboard": {
        "key": "page.dashboard",
        "name": "Dashboard",
        "description": "Access to the shipping overview dashboard"
    },
    "analysis": {
        "key": "page.analysis",
        "name": "Analysis",
        "description": "Access to supplier and pack analysis charts"
    },
    "data": {
        "key": "page.data",
        "name": "Data",
        "description": "Access to the shipping data tables"
    },
    "pnl": {
        "key": "page.pnl",
        "name": "PNL",
        "description": "Access to profit and loss reports"
    },
    "generate": {
        "key": "page.generate",
        "name": "Generate Documents",
        "description": "Access to the Generate page for creating invoices and documents"
    },
    "users": {
        "key": "page.users",
        "name": "User Management",
        "description": "Access to user and page access management"
    },
    "configuration": {
        "key": "page.configuration",
        "name": "Configuration",
        "description": "Access to configuration dropdowns and price management"
    },
    "data-logs": {
        "key": "page.data_logs",
        "name": "Data Logs",
        "description": "Access to the data activity log"
    },
}

PAGE_CATEGORY = "page_access"

ROLES = ("admin", "manager", "user", "viewer")

# Pages each role may NOT open by default; everything else is granted.
# Admins are resolved through the fast path and never consult this table,
# but they are still seeded with a full grant so the table reads naturally.
ROLE_DENIED_PAGES = {
    "admin": [],
    "manager": ["pnl"],
    "user": ["users", "data-logs", "pnl", "generate"],
    "viewer": ["configuration", "users", "data-logs", "generate"],
}

# Page name -> permission key, consumed by the access gate
PAGE_PERMISSIONS = {page: config["key"] for page, config in PAGES.items()}


def get_permission_matrix():
    """
    Returns a dictionary with the permission catalog and role defaults
    Format: {
        "permissions": [
            {"permission_key": "page.users", "name": "...", "description": "...",
             "category": "page_access", "is_active": True},
            ...
        ],
        "role_defaults": [
            {"role": "viewer", "permission_key": "page.dashboard", "granted": True},
            ...
        ]
    }
    """
    permissions = []
    role_defaults = []

    for page_name, page_config in PAGES.items():
        permissions.append({
            "permission_key": page_config["key"],
            "name": page_config["name"],
            "description": page_config["description"],
            "category": PAGE_CATEGORY,
            "is_active": True
        })

    for role in ROLES:
        denied = ROLE_DENIED_PAGES[role]
        for page_name, page_config in PAGES.items():
            role_defaults.append({
                "role": role,
                "permission_key": page_config["key"],
                "granted": page_name not in denied
            })

    return {
        "permissions": permissions,
        "role_defaults": role_defaults
    }


# Export the matrix for use in seed scripts
PERMISSION_MATRIX = get_permission_matrix()
