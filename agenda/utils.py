import datetime

# ============================================================
# Constants
# ============================================================
SUNDAY_SERVICE_TYPE = "Servicio Dominical"
QUARANTINE_SERVICE_TYPE = "cuarentena"

MORNING = "08:00"
LATE_MORNING = "10:45"
EVENING = "19:00"

SERVICE_TITLES = {
    MORNING: "08:00 a.m.",
    LATE_MORNING: "10:45 a.m.",
    EVENING: "07:00 p.m.",
}

GROUPS = {
    "ALEIDA": "8218442a-9406-4b97-9212-29b50279f2ce",
    "KEYLA": "1275fdde-515c-4843-a7a3-08daec62e69e",
    "MASSY": "e5297132-d86c-4978-9b71-a98d2581b977",
}
GROUP_NAMES = {
    "ALEIDA": "Grupo de Aleida",
    "KEYLA": "Grupo de Keyla",
    "MASSY": "Grupo de Massy",
}
GROUP_KEYS_BY_ID = {v: k for k, v in GROUPS.items()}

# Aleida -> Keyla -> Massy; one group rests each Sunday
GROUP_ROTATIONS = [
    {"service1": "ALEIDA", "service2": "KEYLA", "rest": "MASSY"},
    {"service1": "MASSY", "service2": "ALEIDA", "rest": "KEYLA"},
    {"service1": "KEYLA", "service2": "MASSY", "rest": "ALEIDA"},
]

DIRECTORS_CONFIG = {
    "Armando Noel Charle": {"only_morning": False, "group": None},
    "Damaris Castillo Jimenez": {"only_morning": False, "group": "KEYLA"},
    "Maria del A. Pérez Santana": {"only_morning": True, "group": None},
    "Roosevelt Martinez": {"only_morning": False, "group": None},
    "Guarionex García": {"only_morning": True, "group": None},
    "Eliabi Joana Sierra Castillo": {"only_morning": False, "group": "ALEIDA"},
    "Keyla Yanira Medrano Medrano": {"only_morning": False, "group": "KEYLA"},
    "Denny Alberto Santana": {"only_morning": False, "group": None},
    "Félix Nicolás Peralta Hernández": {"only_morning": False, "group": None},
}
DIRECTOR_ROTATION = list(DIRECTORS_CONFIG.keys())
ONLY_MORNING = {n for n, c in DIRECTORS_CONFIG.items() if c["only_morning"]}

MONTH_NAMES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

# ============================================================
# Helpers
# ============================================================
def director_group(name):
    cfg = DIRECTORS_CONFIG.get(name)
    return cfg["group"] if cfg else None


def weekdays_of_year(year, weekday):
    """All dates of `year` falling on `weekday` (0=Monday, 6=Sunday)."""
    d = datetime.date(year, 1, 1)
    d += datetime.timedelta(days=(weekday - d.weekday()) % 7)
    days = []
    while d.year == year:
        days.append(d)
        d += datetime.timedelta(days=7)
    return days


def sundays_of_year(year):
    return weekdays_of_year(year, 6)


def parse_cutoff(year, cutoff):
    """'MM-DD' -> date in `year`."""
    month, day = (int(p) for p in cutoff.split("-"))
    return datetime.date(year, month, day)


def quarantine_saturdays(year, cutoff="02-21"):
    """Saturdays strictly before the cutoff."""
    limit = parse_cutoff(year, cutoff)
    return [d for d in weekdays_of_year(year, 5) if d < limit]


def quarantine_wednesdays(year, cutoff="02-21"):
    """Wednesdays strictly after the cutoff."""
    limit = parse_cutoff(year, cutoff)
    return [d for d in weekdays_of_year(year, 2) if d > limit]


def associated_sunday(date_obj):
    """Sunday whose resting group sings a quarantine service on `date_obj`.

    Saturdays borrow the next day, Wednesdays the preceding Sunday.
    """
    if date_obj.weekday() == 5:
        return date_obj + datetime.timedelta(days=1)
    return date_obj - datetime.timedelta(days=(date_obj.weekday() + 1) % 7)


def week_of_month(date_obj):
    """1st, 2nd, 3rd... occurrence of this weekday within its month."""
    return (date_obj.day - 1) // 7 + 1


def month_name(date_obj):
    return MONTH_NAMES[date_obj.month - 1]


def slot_datetime(date_obj, hhmm):
    hour, minute = (int(p) for p in hhmm.split(":"))
    return datetime.datetime(date_obj.year, date_obj.month, date_obj.day, hour, minute)


def year_bounds(year):
    """Half-open [Jan 1 year, Jan 1 year+1) as datetimes."""
    return datetime.datetime(year, 1, 1), datetime.datetime(year + 1, 1, 1)


def format_clock(seconds):
    """Render seconds as MM:SS, or HH:MM:SS past the hour."""
    seconds = int(seconds)
    hrs = seconds // 3600
    mins = (seconds % 3600) // 60
    secs = seconds % 60
    if hrs > 0:
        return f"{hrs:02d}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"
