"""
Provider database model.
"""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum
import enum
from caracol.core.database import Base


def enum_values(enum_cls):
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]


class ApiType(str, enum.Enum):
    """Kind of api exposed by a provider."""
    GRAFANACLOUD = "grafanacloud"
    ELASTICSEARCH = "elasticsearch"
    CLOUDWATCH = "cloudwatch"


class AuthType(str, enum.Enum):
    """How requests to a provider are authenticated."""
    BEARER_TOKEN = "bearer_token"
    BASIC_AUTH = "basic_auth"
    AWS_ACCESS_KEY = "aws_access_key"


class Provider(Base):
    """A query capable backend such as a Grafana Cloud stack or an Elasticsearch cluster."""

    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    api_type = Column(SQLEnum(ApiType, name="api_type", values_callable=enum_values), nullable=False)
    api_url = Column(String, nullable=False)
    auth_type = Column(SQLEnum(AuthType, name="auth_type", values_callable=enum_values), nullable=False)
