"""
Decision and request models exchanged with the gateway.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from shared.errors import InvalidRequestContext

DENY_PRINCIPAL = "user"
POLICY_VERSION = "2012-10-17"
INVOKE_ACTION = "execute-api:Invoke"


class Effect(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


@dataclass(frozen=True)
class RequestContext:
    """Origin identifiers parsed out of an API Gateway method ARN.

    ``arn:aws:execute-api:{region}:{account}:{api_id}/{stage}/{method}/{path...}``
    """

    method_arn: str
    region: str
    account_id: str
    api_id: str
    stage: str
    method: str = ""
    resource_path: str = ""

    @classmethod
    def from_method_arn(cls, method_arn: str) -> "RequestContext":
        if not method_arn:
            raise InvalidRequestContext("Missing method ARN")

        head, _, tail = method_arn.partition("/")
        arn_parts = head.split(":")
        if len(arn_parts) != 6 or arn_parts[0] != "arn":
            raise InvalidRequestContext("Method ARN is not an execute-api ARN",
                                        details={"method_arn": method_arn})

        path_parts = tail.split("/") if tail else []
        if not path_parts or not path_parts[0]:
            raise InvalidRequestContext("Method ARN has no stage", details={"method_arn": method_arn})

        region, account_id, api_id = arn_parts[3], arn_parts[4], arn_parts[5]
        if not (region and account_id and api_id):
            raise InvalidRequestContext("Method ARN is missing origin identifiers",
                                        details={"method_arn": method_arn})

        return cls(
            method_arn=method_arn,
            region=region,
            account_id=account_id,
            api_id=api_id,
            stage=path_parts[0],
            method=path_parts[1] if len(path_parts) > 1 else "",
            resource_path="/".join(path_parts[2:]),
        )

    def stage_scope(self) -> str:
        """Every method and resource within this API stage."""
        return f"arn:aws:execute-api:{self.region}:{self.account_id}:{self.api_id}/{self.stage}/*/*"


class AuthorizationDecision(BaseModel):
    """Outcome of one authorization request."""

    principal_id: str
    effect: Effect
    resource_scope: str
    context: Dict[str, str] = Field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.effect == Effect.ALLOW

    def to_policy(self) -> Dict[str, Any]:
        """Render the gateway's policy document shape."""
        response: Dict[str, Any] = {
            "principalId": self.principal_id,
            "policyDocument": {
                "Version": POLICY_VERSION,
                "Statement": [
                    {
                        "Action": INVOKE_ACTION,
                        "Effect": self.effect.value,
                        "Resource": self.resource_scope,
                    }
                ],
            },
        }
        if self.effect == Effect.ALLOW and self.context:
            response["context"] = dict(self.context)
        return response
