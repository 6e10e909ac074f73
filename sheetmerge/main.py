from sheetmerge.api.main import app, settings

if __name__ == "__main__":
    import os
    import uvicorn
    host = os.getenv("SHEETMERGE_HOST", "0.0.0.0")
    port = int(os.getenv("SHEETMERGE_PORT", "8001"))
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
