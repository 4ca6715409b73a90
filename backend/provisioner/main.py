from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from provisioner.config import settings
from provisioner.middleware.exceptions import register_exception_handlers
from provisioner.routers import health, installations, projects, sites
from provisioner.services.scheduler import lifespan

app = FastAPI(
    title="Site Provisioner",
    description="Resumable cPanel / Cloudflare / installer provisioning for client sites",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(installations.router, prefix="/api/installations", tags=["installations"])
app.include_router(sites.router, prefix="/api/sites", tags=["sites"])
app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
