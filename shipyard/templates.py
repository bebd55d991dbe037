"""Built-in service templates: ready-made blueprints for common self-hosted services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

PROFILE_ECO = "eco"
PROFILE_BALANCED = "balanced"
PROFILE_PERFORMANCE = "performance"

ENGINE_DOCKER = "docker"
DEFAULT_MODE = "production"


class Category(str, Enum):
    """A group of related templates."""

    DATABASE = "database"
    MONITORING = "monitoring"
    STORAGE = "storage"
    DEVTOOLS = "devtools"
    MESSAGING = "messaging"
    SECURITY = "security"
    WEB = "web"


@dataclass(frozen=True)
class TemplateParam:
    """A value the user can set at deploy time."""

    name: str
    label: str = ""
    description: str = ""
    default: str = ""
    required: bool = False
    secret: bool = False  # render as a password field


@dataclass(frozen=True)
class Template:
    """A built-in service blueprint that deploys a single Docker image."""

    id: str
    name: str
    description: str
    category: Category
    tags: tuple[str, ...]
    icon: str
    doc_url: str
    default_profile: str
    image: str
    port: int
    parameters: tuple[TemplateParam, ...] = field(default_factory=tuple)

    def build_manifest(self, params: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
        """Return the service manifest with parameter defaults overridden by params."""
        merged = {p.name: p.default for p in self.parameters}
        merged.update(params or {})
        return image_manifest(self.id, self.image, self.port, merged)


def _param(name: str, label: str, default: str, secret: bool = False) -> TemplateParam:
    return TemplateParam(name=name, label=label, default=default, required=True, secret=secret)


_TEMPLATES: tuple[Template, ...] = (
    # ── database ──
    Template(
        id="postgres",
        name="PostgreSQL",
        description="The world's most advanced open source relational database",
        category=Category.DATABASE,
        tags=("database", "sql", "postgres"),
        icon="🐘",
        doc_url="https://hub.docker.com/_/postgres",
        default_profile=PROFILE_BALANCED,
        image="postgres:16-alpine",
        port=5432,
        parameters=(
            _param("POSTGRES_DB", "Database name", "shipyard"),
            _param("POSTGRES_USER", "Username", "admin"),
            _param("POSTGRES_PASSWORD", "Password", "password", secret=True),
        ),
    ),
    Template(
        id="mysql",
        name="MySQL",
        description="The most popular open source SQL database",
        category=Category.DATABASE,
        tags=("database", "sql", "mysql"),
        icon="🐬",
        doc_url="https://hub.docker.com/_/mysql",
        default_profile=PROFILE_BALANCED,
        image="mysql:8.0",
        port=3306,
        parameters=(
            _param("MYSQL_DATABASE", "Database name", "shipyard"),
            _param("MYSQL_USER", "Username", "admin"),
            _param("MYSQL_PASSWORD", "Password", "password", secret=True),
            _param("MYSQL_ROOT_PASSWORD", "Root password", "rootpass", secret=True),
        ),
    ),
    Template(
        id="redis",
        name="Redis",
        description="In-memory data structure store — cache, queue, pub/sub",
        category=Category.DATABASE,
        tags=("cache", "redis", "queue"),
        icon="🔴",
        doc_url="https://hub.docker.com/_/redis",
        default_profile=PROFILE_ECO,
        image="redis:7-alpine",
        port=6379,
    ),
    Template(
        id="mongodb",
        name="MongoDB",
        description="Document-oriented NoSQL database",
        category=Category.DATABASE,
        tags=("database", "nosql", "mongodb"),
        icon="🍃",
        doc_url="https://hub.docker.com/_/mongo",
        default_profile=PROFILE_BALANCED,
        image="mongo:7",
        port=27017,
        parameters=(
            _param("MONGO_INITDB_ROOT_USERNAME", "Root username", "admin"),
            _param("MONGO_INITDB_ROOT_PASSWORD", "Root password", "password", secret=True),
        ),
    ),
    # ── monitoring ──
    Template(
        id="prometheus",
        name="Prometheus",
        description="Open-source monitoring and alerting toolkit",
        category=Category.MONITORING,
        tags=("monitoring", "metrics", "prometheus"),
        icon="🔥",
        doc_url="https://hub.docker.com/r/prom/prometheus",
        default_profile=PROFILE_BALANCED,
        image="prom/prometheus:latest",
        port=9090,
    ),
    Template(
        id="grafana",
        name="Grafana",
        description="The open observability platform — dashboards and visualisations",
        category=Category.MONITORING,
        tags=("monitoring", "dashboards", "grafana"),
        icon="📊",
        doc_url="https://hub.docker.com/r/grafana/grafana",
        default_profile=PROFILE_BALANCED,
        image="grafana/grafana:latest",
        port=3000,
        parameters=(
            _param("GF_SECURITY_ADMIN_PASSWORD", "Admin password", "admin", secret=True),
        ),
    ),
    Template(
        id="cadvisor",
        name="cAdvisor",
        description="Container resource usage and performance analysis",
        category=Category.MONITORING,
        tags=("monitoring", "containers", "cadvisor"),
        icon="📡",
        doc_url="https://github.com/google/cadvisor",
        default_profile=PROFILE_ECO,
        image="gcr.io/cadvisor/cadvisor:latest",
        port=8080,
    ),
    # ── storage ──
    Template(
        id="minio",
        name="MinIO",
        description="High-performance S3-compatible object storage",
        category=Category.STORAGE,
        tags=("storage", "s3", "minio"),
        icon="🪣",
        doc_url="https://hub.docker.com/r/minio/minio",
        default_profile=PROFILE_BALANCED,
        image="minio/minio:latest",
        port=9000,
        parameters=(
            _param("MINIO_ROOT_USER", "Access key", "minioadmin"),
            _param("MINIO_ROOT_PASSWORD", "Secret key", "minioadmin", secret=True),
        ),
    ),
    Template(
        id="nextcloud",
        name="Nextcloud",
        description="Self-hosted productivity platform — files, calendar, contacts",
        category=Category.STORAGE,
        tags=("storage", "cloud", "nextcloud", "files"),
        icon="☁️",
        doc_url="https://hub.docker.com/_/nextcloud",
        default_profile=PROFILE_PERFORMANCE,
        image="nextcloud:latest",
        port=80,
        parameters=(
            _param("NEXTCLOUD_ADMIN_USER", "Admin username", "admin"),
            _param("NEXTCLOUD_ADMIN_PASSWORD", "Admin password", "password", secret=True),
        ),
    ),
    # ── dev tools ──
    Template(
        id="gitea",
        name="Gitea",
        description="Lightweight self-hosted Git service",
        category=Category.DEVTOOLS,
        tags=("git", "devtools", "gitea"),
        icon="🍵",
        doc_url="https://hub.docker.com/r/gitea/gitea",
        default_profile=PROFILE_BALANCED,
        image="gitea/gitea:latest",
        port=3000,
    ),
    Template(
        id="registry",
        name="Docker Registry",
        description="Private Docker image registry",
        category=Category.DEVTOOLS,
        tags=("docker", "registry", "images"),
        icon="📦",
        doc_url="https://hub.docker.com/_/registry",
        default_profile=PROFILE_ECO,
        image="registry:2",
        port=5000,
    ),
    Template(
        id="portainer",
        name="Portainer",
        description="Docker management UI",
        category=Category.DEVTOOLS,
        tags=("docker", "management", "portainer"),
        icon="🐳",
        doc_url="https://hub.docker.com/r/portainer/portainer-ce",
        default_profile=PROFILE_ECO,
        image="portainer/portainer-ce:latest",
        port=9000,
    ),
    # ── messaging ──
    Template(
        id="rabbitmq",
        name="RabbitMQ",
        description="Open source message broker",
        category=Category.MESSAGING,
        tags=("queue", "messaging", "rabbitmq", "amqp"),
        icon="🐇",
        doc_url="https://hub.docker.com/_/rabbitmq",
        default_profile=PROFILE_BALANCED,
        image="rabbitmq:3-management-alpine",
        port=5672,
        parameters=(
            _param("RABBITMQ_DEFAULT_USER", "Username", "admin"),
            _param("RABBITMQ_DEFAULT_PASS", "Password", "password", secret=True),
        ),
    ),
    # ── security ──
    Template(
        id="vault",
        name="HashiCorp Vault",
        description="Secrets management and data protection",
        category=Category.SECURITY,
        tags=("secrets", "security", "vault"),
        icon="🔐",
        doc_url="https://hub.docker.com/r/hashicorp/vault",
        default_profile=PROFILE_BALANCED,
        image="hashicorp/vault:latest",
        port=8200,
    ),
    Template(
        id="keycloak",
        name="Keycloak",
        description="Open source identity and access management",
        category=Category.SECURITY,
        tags=("auth", "sso", "keycloak", "oauth"),
        icon="🔑",
        doc_url="https://hub.docker.com/r/keycloak/keycloak",
        default_profile=PROFILE_PERFORMANCE,
        image="quay.io/keycloak/keycloak:latest",
        port=8080,
        parameters=(
            _param("KEYCLOAK_ADMIN", "Admin username", "admin"),
            _param("KEYCLOAK_ADMIN_PASSWORD", "Admin password", "password", secret=True),
        ),
    ),
    # ── web ──
    Template(
        id="traefik",
        name="Traefik",
        description="Cloud-native application proxy and load balancer",
        category=Category.WEB,
        tags=("proxy", "loadbalancer", "traefik"),
        icon="🔀",
        doc_url="https://hub.docker.com/_/traefik",
        default_profile=PROFILE_BALANCED,
        image="traefik:latest",
        port=80,
    ),
    Template(
        id="nginx",
        name="NGINX",
        description="High-performance web server and reverse proxy",
        category=Category.WEB,
        tags=("web", "proxy", "nginx"),
        icon="🌐",
        doc_url="https://hub.docker.com/_/nginx",
        default_profile=PROFILE_ECO,
        image="nginx:alpine",
        port=80,
    ),
    Template(
        id="whoami",
        name="Whoami",
        description="Tiny HTTP server that prints OS information — great for testing",
        category=Category.WEB,
        tags=("test", "debug", "whoami"),
        icon="👋",
        doc_url="https://hub.docker.com/r/traefik/whoami",
        default_profile=PROFILE_ECO,
        image="traefik/whoami:latest",
        port=80,
    ),
)


def all_templates() -> list[Template]:
    """Return every built-in template, in catalogue order."""
    return list(_TEMPLATES)


def get(template_id: str) -> Optional[Template]:
    """Return the template with this id, or None."""
    return next((t for t in _TEMPLATES if t.id == template_id), None)


def by_category(category: "Category | str") -> list[Template]:
    """Return the templates in a category."""
    return [t for t in _TEMPLATES if t.category == category]


def search(query: str) -> list[Template]:
    """Return templates whose name, description or category contains query, ignoring case."""
    needle = query.lower()
    return [
        t
        for t in _TEMPLATES
        if needle in t.name.lower()
        or needle in t.description.lower()
        or needle in t.category.value.lower()
    ]


def image_manifest(name: str, image: str, port: int, env: Mapping[str, str]) -> dict[str, Any]:
    """Return a minimal manifest that pulls and runs a Docker image; empty env values are dropped."""
    return {
        "service": {
            "name": name,
            "engine": {"type": ENGINE_DOCKER},
            "modes": {
                DEFAULT_MODE: {
                    "runtime": {
                        "image": image,
                        "ports": [{"name": "app", "internal": port, "external": "auto"}],
                        "env": {k: v for k, v in env.items() if v != ""},
                        "resources": {"cpu": 0.5, "memory": "512m"},
                    }
                }
            },
        }
    }