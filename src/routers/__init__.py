"""HTTP routers for the Cognito session service."""
