from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loyalty.api import create_app
from loyalty.config import get_settings

settings = get_settings()
app = create_app(settings=settings)
app.root_path = "/api"

handler = Mangum(app, lifespan="off")
