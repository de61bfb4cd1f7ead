"""
HTTP 層

精簡的 FastAPI routers，所有業務規則都在 core/
"""
