"""Data infrastructure stack for ClassCast storage resources."""

from __future__ import annotations

from aws_cdk import CfnOutput, Duration, RemovalPolicy, Stack
from aws_cdk import aws_dynamodb as dynamodb
from aws_cdk import aws_s3 as s3
from constructs import Construct

# Construct id prefix, partition key, output description.
_TABLES = (
    ("Users", "userId", "User profile table name"),
    ("Courses", "courseId", "Course and roster table name"),
    ("Sections", "sectionId", "Course section table name"),
    ("Assignments", "assignmentId", "Assignment table name"),
    ("Submissions", "submissionId", "Video submission table name"),
    ("PeerResponses", "reviewId", "Peer response table name"),
    ("CommunityPosts", "postId", "Community post table name"),
    ("CommunityComments", "commentId", "Community comment table name"),
    ("Videos", "videoId", "Community video feed table name"),
)


class DataStack(Stack):
    """Owns S3 and DynamoDB resources used by the API stack."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        frontend_allowed_origins: list[str],
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.video_bucket = s3.Bucket(
            self,
            "VideoBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            auto_delete_objects=True,
            removal_policy=RemovalPolicy.DESTROY,
            cors=[
                s3.CorsRule(
                    allowed_methods=[s3.HttpMethods.GET, s3.HttpMethods.PUT, s3.HttpMethods.HEAD],
                    allowed_origins=frontend_allowed_origins,
                    allowed_headers=["*"],
                    exposed_headers=["ETag"],
                    max_age=3000,
                )
            ],
            lifecycle_rules=[
                s3.LifecycleRule(abort_incomplete_multipart_upload_after=Duration.days(1)),
            ],
        )

        table_kwargs = {
            "billing_mode": dynamodb.BillingMode.PAY_PER_REQUEST,
            "removal_policy": RemovalPolicy.DESTROY,
        }

        self.tables: dict[str, dynamodb.Table] = {}
        for name, key, _ in _TABLES:
            self.tables[name] = dynamodb.Table(
                self,
                f"{name}Table",
                partition_key=dynamodb.Attribute(name=key, type=dynamodb.AttributeType.STRING),
                **table_kwargs,
            )

        self.users_table = self.tables["Users"]
        self.courses_table = self.tables["Courses"]
        self.sections_table = self.tables["Sections"]
        self.assignments_table = self.tables["Assignments"]
        self.submissions_table = self.tables["Submissions"]
        self.peer_responses_table = self.tables["PeerResponses"]
        self.community_posts_table = self.tables["CommunityPosts"]
        self.community_comments_table = self.tables["CommunityComments"]
        self.videos_table = self.tables["Videos"]

        CfnOutput(
            self,
            "VideoBucketName",
            value=self.video_bucket.bucket_name,
            description="Video upload bucket name",
        )
        for name, _, description in _TABLES:
            CfnOutput(
                self,
                f"{name}TableName",
                value=self.tables[name].table_name,
                description=description,
            )
