"""API infrastructure stack for Lambda + API Gateway wiring."""

from __future__ import annotations

from pathlib import Path

from aws_cdk import CfnOutput, Duration, Stack
from aws_cdk import aws_apigateway as apigateway
from aws_cdk import aws_cognito as cognito
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from constructs import Construct

from stacks.data_stack import DataStack

_CORS_HEADERS = "'Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token'"
_CORS_METHODS = "'GET,POST,PUT,DELETE,OPTIONS'"


class ApiStack(Stack):
    """Owns API Gateway and Lambda resources for the ClassCast API surface."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        data_stack: DataStack,
        stage_name: str,
        demo_mode: str,
        user_pool_id: str,
        notification_sender_email: str,
        admin_notification_email: str,
        app_base_url: str,
        max_video_size_mb: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        project_root = Path(__file__).resolve().parents[2]
        lambda_code = lambda_.Code.from_asset(
            str(project_root),
            exclude=[
                ".git",
                ".github",
                "infra",
                "node_modules",
                "cdk.out",
                "__pycache__",
                "tests",
                "scripts",
                "docs",
            ],
        )

        env = {
            "DEMO_MODE": demo_mode,
            "USERS_TABLE": data_stack.users_table.table_name,
            "COURSES_TABLE": data_stack.courses_table.table_name,
            "SECTIONS_TABLE": data_stack.sections_table.table_name,
            "ASSIGNMENTS_TABLE": data_stack.assignments_table.table_name,
            "SUBMISSIONS_TABLE": data_stack.submissions_table.table_name,
            "PEER_RESPONSES_TABLE": data_stack.peer_responses_table.table_name,
            "COMMUNITY_POSTS_TABLE": data_stack.community_posts_table.table_name,
            "COMMUNITY_COMMENTS_TABLE": data_stack.community_comments_table.table_name,
            "VIDEOS_TABLE": data_stack.videos_table.table_name,
            "VIDEO_BUCKET": data_stack.video_bucket.bucket_name,
            "COGNITO_USER_POOL_ID": user_pool_id,
            "NOTIFICATION_SENDER_EMAIL": notification_sender_email,
            "ADMIN_NOTIFICATION_EMAIL": admin_notification_email,
            "APP_BASE_URL": app_base_url,
            "MAX_VIDEO_SIZE_MB": max_video_size_mb,
        }

        app_api_handler = lambda_.Function(
            self,
            "AppApiHandler",
            runtime=lambda_.Runtime.PYTHON_3_12,
            code=lambda_code,
            handler="backend.runtime.lambda_handler",
            timeout=Duration.seconds(29),
            memory_size=512,
            environment=env,
        )

        uploads_handler = lambda_.Function(
            self,
            "UploadsHandler",
            runtime=lambda_.Runtime.PYTHON_3_12,
            code=lambda_code,
            handler="backend.uploads.lambda_handler",
            timeout=Duration.seconds(15),
            memory_size=256,
            environment={
                "VIDEO_BUCKET": data_stack.video_bucket.bucket_name,
                "MAX_VIDEO_SIZE_MB": max_video_size_mb,
            },
        )

        data_stack.video_bucket.grant_read_write(app_api_handler)
        data_stack.video_bucket.grant_delete(app_api_handler)
        data_stack.video_bucket.grant_put(uploads_handler)
        for table in data_stack.tables.values():
            table.grant_read_write_data(app_api_handler)

        app_api_handler.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ses:SendEmail", "ses:SendRawEmail"],
                resources=["*"],
            )
        )
        if user_pool_id:
            app_api_handler.add_to_role_policy(
                iam.PolicyStatement(
                    actions=[
                        "cognito-idp:AdminCreateUser",
                        "cognito-idp:AdminGetUser",
                        "cognito-idp:AdminAddUserToGroup",
                        "cognito-idp:AdminSetUserPassword",
                    ],
                    resources=[
                        f"arn:{self.partition}:cognito-idp:{self.region}:{self.account}:userpool/{user_pool_id}"
                    ],
                )
            )

        self.rest_api = apigateway.RestApi(
            self,
            "ClassCastApi",
            rest_api_name="classcast-api",
            deploy_options=apigateway.StageOptions(stage_name=stage_name),
            default_cors_preflight_options=apigateway.CorsOptions(
                allow_origins=apigateway.Cors.ALL_ORIGINS,
                allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                allow_headers=[
                    "Content-Type",
                    "Authorization",
                    "X-Amz-Date",
                    "X-Api-Key",
                    "X-Amz-Security-Token",
                ],
            ),
        )
        for response_id, response_type in (
            ("Default4xxCors", apigateway.ResponseType.DEFAULT_4_XX),
            ("Default5xxCors", apigateway.ResponseType.DEFAULT_5_XX),
        ):
            self.rest_api.add_gateway_response(
                response_id,
                type=response_type,
                response_headers={
                    "Access-Control-Allow-Origin": "'*'",
                    "Access-Control-Allow-Headers": _CORS_HEADERS,
                    "Access-Control-Allow-Methods": _CORS_METHODS,
                },
            )

        method_options: dict = {}
        if user_pool_id:
            user_pool = cognito.UserPool.from_user_pool_id(self, "ClassCastUserPool", user_pool_id)
            authorizer = apigateway.CognitoUserPoolsAuthorizer(
                self,
                "ClassCastAuthorizer",
                cognito_user_pools=[user_pool],
            )
            method_options = {
                "authorizer": authorizer,
                "authorization_type": apigateway.AuthorizationType.COGNITO,
            }

        app_integration = apigateway.LambdaIntegration(app_api_handler)
        uploads_integration = apigateway.LambdaIntegration(uploads_handler)

        def add_methods(resource: apigateway.Resource, *methods: str) -> None:
            for method in methods:
                resource.add_method(method, app_integration, **method_options)

        api = self.rest_api.root.add_resource("api")

        health = api.add_resource("health")
        health.add_method("GET", app_integration, authorization_type=apigateway.AuthorizationType.NONE)

        uploads = api.add_resource("uploads")
        uploads.add_method("POST", uploads_integration, **method_options)
        uploads.add_resource("video").add_method("POST", uploads_integration, **method_options)

        courses = api.add_resource("courses")
        add_methods(courses, "GET", "POST")
        add_methods(courses.add_resource("enrollment"), "GET", "POST", "DELETE")
        add_methods(courses.add_resource("bulk-enroll"), "POST")
        course = courses.add_resource("{courseId}")
        add_methods(course, "GET", "PUT", "DELETE")
        add_methods(course.add_resource("publish"), "POST")
        add_methods(course.add_resource("archive"), "POST")
        add_methods(course.add_resource("sections"), "GET", "POST")
        add_methods(course.add_resource("assignments"), "GET", "POST")

        instructor = api.add_resource("instructor")
        add_methods(instructor.add_resource("students").add_resource("move-course"), "POST")
        instructor_course = instructor.add_resource("courses").add_resource("{courseId}")
        add_methods(instructor_course.add_resource("students").add_resource("{studentId}"), "DELETE")
        add_methods(instructor_course.add_resource("export-grades"), "GET")
        add_methods(instructor.add_resource("moderation").add_resource("posts"), "GET", "DELETE")

        add_methods(api.add_resource("video-submissions"), "GET", "POST", "PUT")
        add_methods(api.add_resource("grading"), "GET", "POST", "PUT")
        add_methods(api.add_resource("student").add_resource("grades"), "GET")
        add_methods(api.add_resource("peer").add_resource("reviews"), "GET", "POST")
        add_methods(api.add_resource("notifications"), "GET")

        api_base_url = self.rest_api.url.rstrip("/")
        CfnOutput(
            self,
            "ApiBaseUrl",
            value=api_base_url,
            description="Base URL for smoke tests and frontend API wiring",
        )
        CfnOutput(
            self,
            "SuggestedSmokeBaseUrlSecret",
            value=api_base_url,
            description="Suggested value for BASE_URL",
        )
