import numpy as np
import pytest

from swathproc.records import Kinematics, Ping, TravelTimes


def build_ping(time_d=100.0, nbeams=5, depth=100.0, spacing=10.0, draft=0.0, heave=0.0,
               lon=10.0, lat=58.0, speed=10.0, heading=45.0, roll=0.0, pitch=0.0,
               ssv=1500.0, with_traveltimes=False):
    """Flat-bottom ping with beams spaced evenly across track about nadir."""
    across = (np.arange(nbeams) - nbeams // 2) * spacing
    ping = Ping(
        kinematics=Kinematics(time_d=time_d, lon=lon, lat=lat, speed=speed, heading=heading,
                              draft=draft, roll=roll, pitch=pitch, heave=heave),
        ssv=ssv,
        beamflag=np.zeros(nbeams, dtype=np.uint8),
        bath=np.full(nbeams, float(depth)),
        acrosstrack=across.astype(float),
        alongtrack=np.zeros(nbeams),
        amp=np.full(nbeams, 50.0),
    )
    if with_traveltimes:
        tt = TravelTimes.empty(nbeams)
        height = depth - draft - heave
        for i, x in enumerate(across):
            r = np.hypot(x, height)
            tt.ttimes[i] = 2.0 * r / 1500.0
            tt.angles[i] = np.degrees(np.arctan2(abs(x), height))
            tt.angles_forward[i] = 180.0 if x < 0 else 0.0
            tt.bheave[i] = heave
        ping.traveltimes = tt
    return ping


@pytest.fixture
def make_ping():
    return build_ping
