from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import readsync.db.models
from readsync.db.base import Base
from readsync.db.engine import engine
from readsync.sync.routes import router as sync_router
from readsync.routes import connect as connect_routes
from readsync.routes import documents as documents_routes


app = FastAPI()
app.include_router(sync_router)
app.include_router(connect_routes.router)
app.include_router(documents_routes.router)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[  
        "http://localhost:3000",
        ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    Base.metadata.create_all(bind=engine)
