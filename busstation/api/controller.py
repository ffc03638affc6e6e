from fastapi import FastAPI
from busstation.api import dispatch


# ------------------------------------------------------
# Station staff app
# ------------------------------------------------------
app_station = FastAPI(title="Station APP")

app_station.include_router(dispatch.route_station)
