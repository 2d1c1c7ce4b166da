"""
Default permission catalog and role mappings.

Permission name format: "resource:action[:scope]"
- "user:update"     acts on the caller's own user record
- "user:update:any" acts on any user record
- "user:read:all"   lists every record of the resource

These are seeded into the database on startup and also used to build the
in-memory catalog before the database is reachable.
"""

# (name, category, description)
DEFAULT_PERMISSIONS = [
    # User management
    ("user:create", "user", "Create users"),
    ("user:read", "user", "View own user profile"),
    ("user:read:all", "user", "List and view all users"),
    ("user:update", "user", "Update own user profile"),
    ("user:update:any", "user", "Update any user"),
    ("user:delete", "user", "Delete own user account"),
    ("user:delete:any", "user", "Delete any user"),
    ("user:verify", "user", "Verify user accounts"),
    ("user:activate", "user", "Activate user accounts"),
    ("user:deactivate", "user", "Deactivate user accounts"),

    # Agent management
    ("agent:create", "agent", "Create agent profiles"),
    ("agent:read", "agent", "View agent profiles"),
    ("agent:read:all", "agent", "List all agents"),
    ("agent:update", "agent", "Update own agent profile"),
    ("agent:update:any", "agent", "Update any agent profile"),
    ("agent:delete", "agent", "Delete own agent profile"),
    ("agent:delete:any", "agent", "Delete any agent profile"),
    ("agent:verify", "agent", "Verify agents"),
    ("agent:approve", "agent", "Approve agent applications"),
    ("agent:reject", "agent", "Reject agent applications"),
    ("agent:activate", "agent", "Activate agents"),
    ("agent:deactivate", "agent", "Deactivate agents"),

    # Category management
    ("category:create", "category", "Create service categories"),
    ("category:read", "category", "View service categories"),
    ("category:update", "category", "Update service categories"),
    ("category:delete", "category", "Delete service categories"),
    ("category:activate", "category", "Activate service categories"),
    ("category:deactivate", "category", "Deactivate service categories"),

    # Address management
    ("address:create", "address", "Create own addresses"),
    ("address:read", "address", "View own addresses"),
    ("address:read:all", "address", "View all addresses"),
    ("address:update", "address", "Update own addresses"),
    ("address:update:any", "address", "Update any address"),
    ("address:delete", "address", "Delete own addresses"),
    ("address:delete:any", "address", "Delete any address"),

    # Booking management
    ("booking:create", "booking", "Create bookings"),
    ("booking:read", "booking", "View own bookings"),
    ("booking:read:all", "booking", "View all bookings"),
    ("booking:update", "booking", "Update own bookings"),
    ("booking:update:any", "booking", "Update any booking"),
    ("booking:delete", "booking", "Delete own bookings"),
    ("booking:delete:any", "booking", "Delete any booking"),
    ("booking:assign", "booking", "Assign bookings to agents"),
    ("booking:complete", "booking", "Mark bookings complete"),
    ("booking:cancel", "booking", "Cancel bookings"),

    # Analytics & reporting
    ("analytics:view", "analytics", "View analytics dashboards"),
    ("analytics:export", "analytics", "Export analytics data"),

    # System configuration
    ("system:config:read", "system", "Read system configuration"),
    ("system:config:update", "system", "Update system configuration"),

    # File uploads
    ("file:upload", "file", "Upload files"),
    ("file:delete", "file", "Delete own files"),
    ("file:delete:any", "file", "Delete any file"),
]


ALL_PERMISSIONS = "ALL"


DEFAULT_ROLES = {
    "admin": {
        "display_name": "Administrator",
        "description": "Full system access",
        "permissions": ALL_PERMISSIONS,
    },
    "agent": {
        "display_name": "Agent",
        "description": "Service provider access",
        "permissions": [
            # Own profile
            "agent:read", "agent:update",
            "category:read",
            # Own bookings
            "booking:read", "booking:update", "booking:complete",
            # Profile pictures, work images
            "file:upload", "file:delete",
            # Customer details for bookings
            "user:read",
        ],
    },
    "customer": {
        "display_name": "Customer",
        "description": "End user access",
        "permissions": [
            # Own profile
            "user:read", "user:update",
            # Own addresses
            "address:create", "address:read", "address:update", "address:delete",
            "category:read",
            # Agent discovery
            "agent:read", "agent:read:all",
            # Own bookings
            "booking:create", "booking:read", "booking:update", "booking:cancel",
            "file:upload", "file:delete",
        ],
    },
}


# Permissions guarding the override administration endpoints
OVERRIDE_ADMIN_PERMISSIONS = ("user:update:any", "system:config:update")
CATALOG_READ_PERMISSION = "system:config:read"
