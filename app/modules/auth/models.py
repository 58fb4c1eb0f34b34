# Supabase Auth
# This module uses Supabase's built-in authentication system
# No custom tables are required - Supabase Auth handles:
# - User login and session management (auth.users table)
# - JWT access/refresh token generation and validation

"""
Supabase Auth calls used by SupabaseAuthBackend:
- auth.sign_in_with_password() - Authenticate users
- auth.refresh_session() - Renew the access token before it expires
- auth.sign_out() - Revoke the refresh token on logout

Each login session gets its own AsyncClient so tokens never leak between
sessions. The 8-hour session ceiling is enforced on top of token expiry by
the session lifecycle manager; refreshing a token never extends it.
"""
