#!/usr/bin/env python3
"""CDK app entrypoint for ClassCast infrastructure."""

from __future__ import annotations

import os

import aws_cdk as cdk

from stacks.api_stack import ApiStack
from stacks.data_stack import DataStack

app = cdk.App()

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

stage_name = app.node.try_get_context("stageName") or "dev"
demo_mode = app.node.try_get_context("demoMode") or "0"
user_pool_id = os.getenv("COGNITO_USER_POOL_ID", "") or app.node.try_get_context("userPoolId") or ""
notification_sender_email = app.node.try_get_context("notificationSenderEmail") or ""
admin_notification_email = app.node.try_get_context("adminNotificationEmail") or ""
app_base_url = app.node.try_get_context("appBaseUrl") or ""
max_video_size_mb = str(app.node.try_get_context("maxVideoSizeMb") or "500")
frontend_allowed_origins_raw = os.getenv("FRONTEND_ALLOWED_ORIGINS", "http://localhost:3000")
frontend_allowed_origins = [
    origin.strip()
    for origin in frontend_allowed_origins_raw.split(",")
    if origin and origin.strip()
]
if not frontend_allowed_origins:
    frontend_allowed_origins = ["http://localhost:3000"]

data_stack = DataStack(
    app,
    "ClassCastDataStack",
    env=env,
    frontend_allowed_origins=frontend_allowed_origins,
)

api_stack = ApiStack(
    app,
    "ClassCastApiStack",
    env=env,
    data_stack=data_stack,
    stage_name=stage_name,
    demo_mode=demo_mode,
    user_pool_id=user_pool_id.strip(),
    notification_sender_email=notification_sender_email,
    admin_notification_email=admin_notification_email,
    app_base_url=app_base_url,
    max_video_size_mb=max_video_size_mb,
)
api_stack.add_dependency(data_stack)

app.synth()
