"""All predefined error instances returned by the auth service."""

from __future__ import annotations

from neosynth.errors.neosynth_errors import NeoSynthError

# -- Authentication --------------------------------------------------------

ErrUnauthenticated = NeoSynthError("Unauthorized", status_code=401, code="unauthorized")
ErrInvalidCredentials = NeoSynthError(
    "Invalid credentials", status_code=401, code="invalid-credentials"
)
ErrStepTokenInvalid = NeoSynthError(
    "Invalid or expired step token", status_code=401, code="step-token-invalid"
)
ErrDeviceNotTrusted = NeoSynthError("Device not trusted", status_code=401, code="unauthorized")
ErrAuthInternal = NeoSynthError("Internal Server Error", status_code=500, code="auth-error")
ErrCurrentPasswordIncorrect = NeoSynthError(
    "Current password is incorrect", status_code=401, code="current-password-incorrect"
)

# -- Authorization ---------------------------------------------------------

ErrForbidden = NeoSynthError("Forbidden", status_code=403, code="forbidden")
ErrAdminRequired = NeoSynthError("Forbidden", status_code=403, code="admin-required")
ErrAccessDenied = NeoSynthError("Forbidden", status_code=403, code="access-denied")
ErrSessionRequired = NeoSynthError(
    "Session authentication required", status_code=403, code="session-required"
)

# -- Validation ------------------------------------------------------------

ErrMissingFields = NeoSynthError(
    "Required fields are missing", status_code=400, code="missing-fields"
)
ErrWeakPassword = NeoSynthError(
    "New password must be at least 8 characters long", status_code=400, code="weak-password"
)
ErrInvalidTotp = NeoSynthError("Invalid TOTP token", status_code=400, code="invalid-totp")
ErrInvalidRole = NeoSynthError("Invalid role", status_code=400, code="invalid-role")
ErrInvalidExpiresIn = NeoSynthError(
    "Invalid expiresIn. Use: 30d, 90d, 1y, or null for no expiration",
    status_code=400,
    code="invalid-expires-in",
)
ErrInvalidIpAllowList = NeoSynthError(
    "Invalid IP address or CIDR notation", status_code=400, code="invalid-ip-allow-list"
)
ErrAdminKeyRequiresAdmin = NeoSynthError(
    "Admin role API keys can only be created by admin users",
    status_code=403,
    code="admin-key-requires-admin",
)

# -- Not Found -------------------------------------------------------------

ErrUserNotFound = NeoSynthError("User not found", status_code=404, code="user-not-found")
ErrSecurityProfileNotFound = NeoSynthError(
    "User security data not found", status_code=404, code="security-profile-not-found"
)
ErrApiKeyNotFound = NeoSynthError("API key not found", status_code=404, code="api-key-not-found")

# -- Conflict --------------------------------------------------------------

ErrUserAlreadyExists = NeoSynthError(
    "Username already exists", status_code=400, code="user-already-exists"
)
