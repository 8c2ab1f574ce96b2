"""
Settle Backend API

A FastAPI backend for splitting a shared expense and collecting each
member's payment toward a single payout.
This module sets up the app and mounts routers - all endpoint logic is in routers/.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import models
from database import engine

# Import routers
from routers import groups, payments, network


# Create database tables
models.Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="Settle API",
    description="API for split payments and collected-funds tracking",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this to frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(groups.router)
app.include_router(payments.router)
app.include_router(network.router)
