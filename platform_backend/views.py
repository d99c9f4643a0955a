from django.conf import settings
from django.http import JsonResponse
from django.shortcuts import redirect


def index(request):
    # Logged in? send to the organizer dashboard
    if request.user.is_authenticated:
        return redirect(settings.AUTH_HOME_URL)
    return redirect(settings.FRONTEND_URL)


def health(request):
    return JsonResponse({"ok": True})
