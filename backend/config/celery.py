import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('telehealth')

# Read every CELERY_* key from Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Pick up tasks.py from each installed app
app.autodiscover_tasks()
