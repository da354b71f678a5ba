"""
Authorizer service package.

Request-time half of the trust layer: validates bearer tokens issued by
Cognito or Azure AD against cached provider key sets and answers with a
scoped Allow/Deny decision for the gateway. Every failure is a Deny.
"""
