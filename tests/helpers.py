from unittest.mock import MagicMock

from models import NotificationJob


def make_response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def make_job(job_id, job_type="DAILY_CHALLENGE", user=None):
    return NotificationJob(id=job_id, user_id=job_id, type=job_type, status="PENDING", user=user)
