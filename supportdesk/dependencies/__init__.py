"""FastAPI dependencies shared by the support routers."""
