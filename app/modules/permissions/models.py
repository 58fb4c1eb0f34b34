# Supabase tables: permissions, role_permissions, user_permissions, user_profiles, user_sessions
# This file documents the expected database schema
# Reads and realtime subscriptions are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

permissions:
- id: uuid (primary key)
- permission_key: text (not null, unique) - dotted namespace, e.g. "page.users"
- name: text (not null)
- description: text (nullable)
- category: text (not null) - e.g. "page_access"
- is_active: boolean (default: true) - false removes the key from every resolution
- created_at: timestamp (default: now())

role_permissions:
- id: uuid (primary key)
- role: text (not null) - one of admin, manager, user, viewer
- permission_id: uuid (foreign key to permissions.id, not null)
- granted: boolean (not null)
- unique constraint on (role, permission_id)

user_permissions:
- id: uuid (primary key)
- user_id: uuid (foreign key to user_profiles.id, not null)
- permission_id: uuid (foreign key to permissions.id, not null)
- granted: boolean (not null) - an explicit deny is a row with granted = false
- granted_by: uuid (nullable)
- granted_at: timestamp (default: now())
- notes: text (nullable)
- unique constraint on (user_id, permission_id)

user_profiles (owned by profile management, read-only here):
- id: uuid (primary key, references auth.users.id)
- email: text (unique, not null)
- full_name: text (nullable)
- role: text (not null)
- is_active: boolean (default: true)
- last_login: timestamp (nullable) - stamped on successful login

user_sessions:
- session_id: text (primary key)
- user_id: uuid (not null)
- started_at: timestamp (default: now())
- last_heartbeat: timestamp (not null) - "currently active" means within 5 minutes

Realtime (postgres_changes) must be enabled for role_permissions,
user_permissions and user_profiles.

role_permissions and user_permissions should use REPLICA IDENTITY FULL so
DELETE events carry user_id / role in the old record. Realtime ignores
column filters on deletes; without the full old record every delete on the
table triggers a re-resolution in every subscribed session.
"""
