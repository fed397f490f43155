import sys
from fastapi import FastAPI
import uvicorn
from dotenv import load_dotenv
from rbicache.config import Settings, ConfigurationError
from rbicache.interfaces.http.app import create_app

load_dotenv()

try:
    settings = Settings()
except ConfigurationError as e:
    print(f"\nConfiguration Error:\n{e}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"\nUnexpected error during configuration: {e}", file=sys.stderr)
    sys.exit(1)

try:
    app: FastAPI = create_app(settings)
except Exception as e:
    print(f"\nFailed to initialize application: {str(e)}", file=sys.stderr)
    print("Please check your cache backend configuration.", file=sys.stderr)
    raise SystemExit(1)

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_config=None,
        access_log=False,
    )
