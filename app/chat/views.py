"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Conversation lifecycle, membership and stats
- MessageViewSet: Message operations (nested under conversation)

URL Structure:
    /api/v1/chat/conversations/                               GET, POST
    /api/v1/chat/conversations/stats/                         GET
    /api/v1/chat/conversations/join/                          POST
    /api/v1/chat/conversations/{id}/                          GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/archive/                  POST, DELETE
    /api/v1/chat/conversations/{id}/mute/                     POST, DELETE
    /api/v1/chat/conversations/{id}/read/                     POST
    /api/v1/chat/conversations/{id}/leave/                    POST
    /api/v1/chat/conversations/{id}/order-status/             POST
    /api/v1/chat/conversations/{id}/support/                  POST
    /api/v1/chat/conversations/{id}/participants/             POST
    /api/v1/chat/conversations/{id}/participants/{user_id}/   DELETE
    /api/v1/chat/conversations/{id}/messages/                 GET, POST
    /api/v1/chat/conversations/{id}/messages/media/           POST
    /api/v1/chat/conversations/{id}/messages/search/          GET
    /api/v1/chat/conversations/{id}/messages/{pk}/            GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/history/    GET
    /api/v1/chat/conversations/{id}/messages/{pk}/reactions/  POST, DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/pin/        POST, DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/star/       POST
    /api/v1/chat/conversations/{id}/messages/{pk}/read/       POST
    /api/v1/chat/conversations/{id}/messages/{pk}/forward/    POST

Design Decisions:
    - All operations use the service layer for business logic
    - Service error codes map to HTTP statuses in one table (ERROR_STATUS)
    - Successful writes are handed to ChatEventPublisher (broadcast,
      cache invalidation, notifications)
    - Conversation listings, message pages and user stats are served
      through CacheCoordinator
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.services import ServiceResult

from chat.events import get_publisher
from chat.models import ConversationType
from chat.serializers import (
    ConversationCreateSerializer,
    ConversationDetailSerializer,
    ConversationListQuerySerializer,
    ConversationSerializer,
    ConversationUpdateSerializer,
    ForwardSerializer,
    JoinByCodeSerializer,
    MediaSubmitSerializer,
    MessageCreateSerializer,
    MessageEditHistorySerializer,
    MessageEditSerializer,
    MessageListQuerySerializer,
    MessageSerializer,
    MuteSerializer,
    OrderStatusSerializer,
    ParticipantCreateSerializer,
    ParticipantSerializer,
    ReactionCreateSerializer,
    SearchQuerySerializer,
    SupportActionSerializer,
)
from chat.services import (
    ConversationService,
    MessageSearchService,
    MessageService,
    ParticipantService,
    ReactionService,
)

User = get_user_model()


ERROR_STATUS = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_PARTICIPANT": status.HTTP_404_NOT_FOUND,
    "MESSAGE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "NOT_AUTHOR": status.HTTP_403_FORBIDDEN,
    "MEDIA_NOT_ALLOWED": status.HTTP_403_FORBIDDEN,
    "CONVERSATION_FULL": status.HTTP_409_CONFLICT,
    "ALREADY_PARTICIPANT": status.HTTP_409_CONFLICT,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
}


def error_response(result: ServiceResult) -> Response:
    """Failed ServiceResult as an error response; unmapped codes are 400."""
    return Response(
        {"error": result.error, "error_code": result.error_code},
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def page_payload(result, serializer_class, context=None) -> dict:
    return {
        "results": serializer_class(result.items, many=True, context=context or {}).data,
        "pagination": result.pagination,
    }


class ConversationViewSet(viewsets.ViewSet):
    """
    ViewSet for conversation operations.

    list:
        Conversations of the current user, most recent activity first,
        with unread counts and last message preview.

    create:
        Create a conversation. The body's ``type`` selects direct, support,
        order, group or broadcast. Direct and order chats return the
        existing conversation when there is one.

    retrieve:
        Conversation details with participants, settings and statistics.

    partial_update:
        Update title, description, image, settings or tags.

    destroy:
        Soft delete the conversation.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"[0-9a-fA-F-]{36}"

    def get_conversation(self, pk):
        """Participant-scoped lookup; returns (conversation, error response)."""
        result = ConversationService.get_for_user(pk, self.request.user)
        if not result.success:
            return None, error_response(result)
        return result.data, None

    def respond(self, result: ServiceResult, serializer_class=ConversationSerializer, **kwargs):
        if not result.success:
            return error_response(result)
        get_publisher().conversation_changed(result.data)
        return Response(
            serializer_class(result.data, context={"request": self.request}).data,
            **kwargs,
        )

    @extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        parameters=[ConversationListQuerySerializer],
        responses={200: ConversationSerializer(many=True)},
        tags=["Chat - Conversations"],
    )
    def list(self, request):
        query = ConversationListQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        options = query.validated_data

        coordinator = get_publisher().cache
        key = coordinator.conversations_key(request.user.pk, options)
        payload = coordinator.get(key)
        if payload is None:
            result = ConversationService.list_for_user(
                request.user,
                page=options["page"],
                limit=options["limit"],
                conversation_type=options.get("type"),
                include_archived=options["include_archived"],
                include_expired=options["include_expired"],
            )
            if not result.success:
                return error_response(result)
            payload = page_payload(result.data, ConversationSerializer)
            coordinator.set(key, payload, coordinator.conversations_ttl)
        return Response(payload)

    @extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        request=ConversationCreateSerializer,
        responses={
            201: ConversationDetailSerializer,
            400: OpenApiResponse(description="Invalid body or business rule violation"),
            403: OpenApiResponse(description="Only staff can create broadcasts"),
            409: OpenApiResponse(description="Group would exceed its capacity"),
        },
        tags=["Chat - Conversations"],
    )
    def create(self, request):
        serializer = ConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        conversation_type = data["type"]
        participant_ids = data["participant_ids"]

        if conversation_type == ConversationType.DIRECT:
            other_user = get_object_or_404(User, pk=participant_ids[0], is_active=True)
            result = ConversationService.create_direct(request.user, other_user)
        elif conversation_type == ConversationType.SUPPORT:
            result = ConversationService.create_support(request.user, data["department"])
        elif conversation_type == ConversationType.ORDER:
            driver = None
            if data.get("driver_id"):
                driver = get_object_or_404(User, pk=data["driver_id"], is_active=True)
            result = ConversationService.create_order(
                data["order_id"],
                request.user,
                driver=driver,
                restaurant_id=data["restaurant_id"],
            )
        else:
            members = list(
                User.objects.filter(pk__in=participant_ids, is_active=True).exclude(
                    pk=request.user.pk
                )
            )
            if conversation_type == ConversationType.GROUP:
                result = ConversationService.create_group(
                    request.user,
                    data["title"],
                    description=data["description"],
                    participants=members,
                    is_public=data["is_public"],
                    max_participants=data.get("max_participants"),
                )
            else:
                result = ConversationService.create_broadcast(
                    request.user,
                    data["title"],
                    recipients=members,
                    description=data["description"],
                )

        if not result.success:
            return error_response(result)

        get_publisher().conversation_created(result.data)
        output_serializer = ConversationDetailSerializer(result.data, context={"request": request})
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationDetailSerializer, 404: OpenApiResponse(description="Not found")},
        tags=["Chat - Conversations"],
    )
    def retrieve(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        result = ConversationService.get_detail(conversation, request.user)
        if not result.success:
            return error_response(result)

        conversation.unread_count = result.data["unread_count"]
        data = ConversationDetailSerializer(conversation, context={"request": request}).data
        data["stats"] = {**data["stats"], **result.data["stats"]}
        return Response(data)

    @extend_schema(
        operation_id="update_conversation",
        summary="Update conversation",
        request=ConversationUpdateSerializer,
        responses={200: ConversationDetailSerializer},
        tags=["Chat - Conversations"],
    )
    def partial_update(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        serializer = ConversationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.update(conversation, request.user, serializer.validated_data)
        return self.respond(result, ConversationDetailSerializer)

    @extend_schema(
        operation_id="delete_conversation",
        summary="Delete conversation",
        responses={204: None},
        tags=["Chat - Conversations"],
    )
    def destroy(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        user_ids = conversation.participant_user_ids()
        result = ConversationService.delete_conversation(conversation, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().conversation_changed(result.data, removed_user_ids=user_ids)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="archive_conversation",
        summary="Archive or unarchive conversation",
        description="POST archives, DELETE unarchives.",
        request=None,
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post", "delete"])
    def archive(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error
        if request.method == "DELETE":
            return self.respond(ConversationService.unarchive(conversation, request.user))
        return self.respond(ConversationService.archive(conversation, request.user))

    @extend_schema(
        operation_id="mute_conversation",
        summary="Mute or unmute conversation",
        description="POST mutes (optionally for ``hours``), DELETE unmutes.",
        request=MuteSerializer,
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post", "delete"])
    def mute(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error
        if request.method == "DELETE":
            return self.respond(ConversationService.unmute(conversation, request.user))

        serializer = MuteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.respond(
            ConversationService.mute(
                conversation, request.user, hours=serializer.validated_data.get("hours")
            )
        )

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=None,
        responses={200: OpenApiResponse(description="{'marked': <count>}")},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        result = MessageService.mark_all_read(conversation, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().messages_read(conversation, request.user, count=result.data)
        return Response({"marked": result.data})

    @extend_schema(
        operation_id="leave_conversation",
        summary="Leave conversation",
        request=None,
        responses={204: None},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def leave(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        result = ParticipantService.leave(conversation, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().participant_removed(conversation, result.data)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="add_participant",
        summary="Add participant",
        request=ParticipantCreateSerializer,
        responses={
            201: ParticipantSerializer,
            403: OpenApiResponse(description="Only admins can add members"),
            409: OpenApiResponse(description="Already a participant, or conversation full"),
        },
        tags=["Chat - Participants"],
    )
    @action(detail=True, methods=["post"])
    def participants(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        serializer = ParticipantCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = get_object_or_404(User, pk=serializer.validated_data["user_id"], is_active=True)

        result = ParticipantService.add_participant(conversation, request.user, user)
        if not result.success:
            return error_response(result)

        get_publisher().participant_added(conversation, result.data, added_by=request.user)
        return Response(ParticipantSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="remove_participant",
        summary="Remove participant",
        request=None,
        responses={204: None, 403: OpenApiResponse(description="Only admins can remove members")},
        tags=["Chat - Participants"],
    )
    @action(
        detail=True,
        methods=["delete"],
        url_path=r"participants/(?P<user_id>\d+)",
        url_name="participant-remove",
    )
    def remove_participant(self, request, pk=None, user_id=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        user = get_object_or_404(User, pk=user_id)
        result = ParticipantService.remove_participant(conversation, request.user, user)
        if not result.success:
            return error_response(result)

        get_publisher().participant_removed(conversation, result.data)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="join_conversation_by_code",
        summary="Join public group by code",
        request=JoinByCodeSerializer,
        responses={201: ConversationDetailSerializer},
        tags=["Chat - Participants"],
    )
    @action(detail=False, methods=["post"])
    def join(self, request):
        serializer = JoinByCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ParticipantService.join_by_code(request.user, serializer.validated_data["code"])
        if not result.success:
            return error_response(result)

        participant = result.data
        conversation = participant.conversation
        get_publisher().participant_added(conversation, participant)
        return Response(
            ConversationDetailSerializer(conversation, context={"request": request}).data,
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(
        operation_id="conversation_user_stats",
        summary="Chat statistics of the current user",
        responses={200: OpenApiResponse(description="overview, by_type, recent_conversations, usage")},
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["get"])
    def stats(self, request):
        coordinator = get_publisher().cache
        key = coordinator.stats_key(request.user.pk)
        payload = coordinator.get(key)
        if payload is None:
            result = ConversationService.user_stats(request.user)
            if not result.success:
                return error_response(result)
            payload = result.data
            coordinator.set(key, payload, coordinator.stats_ttl)
        return Response(payload)

    @extend_schema(
        operation_id="transition_order_chat",
        summary="Complete or cancel an order chat",
        request=OrderStatusSerializer,
        responses={200: ConversationSerializer, 409: OpenApiResponse(description="Order already closed")},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"], url_path="order-status")
    def order_status(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.respond(
            ConversationService.transition_order(
                conversation, request.user, serializer.validated_data["status"]
            )
        )

    @extend_schema(
        operation_id="transition_support_chat",
        summary="Assign, resolve, close or reopen a support chat",
        request=SupportActionSerializer,
        responses={200: ConversationSerializer, 409: OpenApiResponse(description="Transition not allowed")},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def support(self, request, pk=None):
        conversation, error = self.get_conversation(pk)
        if error is not None:
            return error

        serializer = SupportActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        agent = None
        if serializer.validated_data.get("agent_id"):
            agent = get_object_or_404(User, pk=serializer.validated_data["agent_id"], is_active=True)

        return self.respond(
            ConversationService.transition_support(
                conversation,
                request.user,
                serializer.validated_data["action"],
                agent=agent,
            )
        )


class MessageViewSet(viewsets.ViewSet):
    """
    ViewSet for message operations within a conversation.

    list:
        Messages of the conversation, newest page first, each page in
        chronological order. Fetching page 1 marks the conversation read.

    create:
        Send a message. Text sends ``text``; other types send ``content``.

    partial_update:
        Edit the text of a message you sent.

    destroy:
        Soft delete a message (author, group admin or staff).
    """

    permission_classes = [IsAuthenticated]

    def get_conversation(self):
        result = ConversationService.get_for_user(self.kwargs["conversation_pk"], self.request.user)
        if not result.success:
            return None, error_response(result)
        return result.data, None

    def get_message(self, pk):
        result = MessageService.get_for_user(pk, self.request.user)
        if not result.success:
            return None, error_response(result)
        message = result.data
        if str(message.conversation_id) != str(self.kwargs["conversation_pk"]):
            return None, error_response(
                ServiceResult.failure("Message not found", error_code="MESSAGE_NOT_FOUND")
            )
        return message, None

    @extend_schema(
        operation_id="list_messages",
        summary="List messages",
        parameters=[MessageListQuerySerializer],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Messages"],
    )
    def list(self, request, conversation_pk=None):
        conversation, error = self.get_conversation()
        if error is not None:
            return error

        query = MessageListQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        options = query.validated_data

        coordinator = get_publisher().cache
        key = coordinator.messages_key(conversation.id, options)
        payload = coordinator.get(key)
        if payload is None:
            result = MessageService.list_messages(
                conversation,
                request.user,
                page=options["page"],
                limit=options["limit"],
                before=options.get("before"),
                after=options.get("after"),
                types=options.get("types"),
                include_deleted=options["include_deleted"],
                include_system=options["include_system"],
                mark_read=False,
            )
            if not result.success:
                return error_response(result)
            payload = page_payload(result.data, MessageSerializer)
            coordinator.set(key, payload, coordinator.messages_ttl)

        if options["page"] == 1 and conversation.get_active_participant_for_user(request.user):
            marked = MessageService.mark_all_read(conversation, request.user)
            if marked.success and marked.data:
                get_publisher().messages_read(conversation, request.user, count=marked.data)

        return Response(payload)

    @extend_schema(
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={
            201: MessageSerializer,
            400: OpenApiResponse(description="Empty, too long or malformed content"),
            403: OpenApiResponse(description="Posting not allowed"),
        },
        tags=["Chat - Messages"],
    )
    def create(self, request, conversation_pk=None):
        conversation, error = self.get_conversation()
        if error is not None:
            return error

        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data["message_type"] == "text":
            result = MessageService.append_text(
                conversation,
                request.user,
                data["text"],
                reply_to=data.get("reply_to"),
                mentions=data["mentions"],
            )
        else:
            result = MessageService.append_content(
                conversation,
                request.user,
                data["message_type"],
                data["content"],
                reply_to=data.get("reply_to"),
                mentions=data["mentions"],
            )

        if not result.success:
            return error_response(result)

        get_publisher().message_created(result.data)
        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_message",
        summary="Get message",
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    )
    def retrieve(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error
        return Response(MessageSerializer(message).data)

    @extend_schema(
        operation_id="edit_message",
        summary="Edit message",
        description=(
            "Edit the text of a message you sent. The previous content is kept "
            "in the edit history (last 10 versions) and sent_at is unchanged."
        ),
        request=MessageEditSerializer,
        responses={
            200: MessageSerializer,
            400: OpenApiResponse(description="Empty or too long text, system or deleted message"),
            403: OpenApiResponse(description="Cannot edit messages from other users"),
        },
        tags=["Chat - Messages"],
    )
    def partial_update(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        serializer = MessageEditSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MessageService.edit(message, request.user, serializer.validated_data["text"])
        if not result.success:
            return error_response(result)

        get_publisher().message_edited(result.data)
        return Response(MessageSerializer(result.data).data)

    @extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        responses={204: None, 403: OpenApiResponse(description="Not allowed to delete")},
        tags=["Chat - Messages"],
    )
    def destroy(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        result = MessageService.soft_delete(message, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().message_deleted(result.data)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="message_edit_history",
        summary="Message edit history",
        responses={200: MessageEditHistorySerializer(many=True)},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get"])
    def history(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error
        return Response(MessageEditHistorySerializer(message.edit_history.all(), many=True).data)

    @extend_schema(
        operation_id="submit_media_message",
        summary="Send an uploaded file",
        description="Accepts the descriptor returned by the upload service; no bytes are stored.",
        request=MediaSubmitSerializer,
        responses={201: MessageSerializer, 403: OpenApiResponse(description="Media not allowed")},
        tags=["Chat - Messages"],
    )
    @action(detail=False, methods=["post"])
    def media(self, request, conversation_pk=None):
        conversation, error = self.get_conversation()
        if error is not None:
            return error

        serializer = MediaSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        descriptor = dict(serializer.validated_data)
        message_type = descriptor.pop("message_type", None)
        reply_to = descriptor.pop("reply_to", None)

        result = MessageService.append_media(
            conversation,
            request.user,
            descriptor,
            message_type=message_type,
            reply_to=reply_to,
        )
        if not result.success:
            return error_response(result)

        get_publisher().message_created(result.data)
        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="search_messages",
        summary="Search messages",
        description="Case-insensitive text search. At least one filter is required.",
        parameters=[SearchQuerySerializer],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Messages"],
    )
    @action(detail=False, methods=["get"])
    def search(self, request, conversation_pk=None):
        conversation, error = self.get_conversation()
        if error is not None:
            return error

        query = SearchQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        options = query.validated_data

        result = MessageSearchService.search(
            conversation,
            request.user,
            term=options["q"],
            sender=options.get("sender"),
            types=options.get("types"),
            date_from=options.get("date_from"),
            date_to=options.get("date_to"),
            page=options["page"],
            limit=options["limit"],
        )
        if not result.success:
            return error_response(result)
        return Response(page_payload(result.data, MessageSerializer))

    @extend_schema(
        operation_id="react_to_message",
        summary="Set or remove your reaction",
        description="POST sets your reaction (replacing any previous one), DELETE removes it.",
        request=ReactionCreateSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["post", "delete"])
    def reactions(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        if request.method == "DELETE":
            result = ReactionService.remove_reaction(message, request.user)
            emoji = None
        else:
            serializer = ReactionCreateSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            emoji = serializer.validated_data["emoji"]
            result = ReactionService.add_reaction(message, request.user, emoji)

        if not result.success:
            return error_response(result)

        get_publisher().reaction_changed(message, request.user, emoji)
        return Response(MessageSerializer(message).data)

    @extend_schema(
        operation_id="pin_message",
        summary="Pin or unpin message",
        description="POST pins, DELETE unpins. In groups only admins may pin.",
        request=None,
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post", "delete"])
    def pin(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        if request.method == "DELETE":
            result = MessageService.unpin(message, request.user)
        else:
            result = MessageService.pin(message, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().pin_changed(result.data)
        return Response(MessageSerializer(result.data).data)

    @extend_schema(
        operation_id="star_message",
        summary="Toggle star",
        request=None,
        responses={200: OpenApiResponse(description="{'starred': bool}")},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def star(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        result = MessageService.toggle_star(message, request.user)
        if not result.success:
            return error_response(result)
        return Response({"starred": result.data})

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message as read",
        request=None,
        responses={200: OpenApiResponse(description="{'created': bool}")},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        result = MessageService.mark_read(message, request.user)
        if not result.success:
            return error_response(result)

        if result.data:
            get_publisher().messages_read(
                message.conversation, request.user, message_id=message.id, count=1
            )
        return Response({"created": result.data})

    @extend_schema(
        operation_id="forward_message",
        summary="Forward message",
        request=ForwardSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def forward(self, request, conversation_pk=None, pk=None):
        message, error = self.get_message(pk)
        if error is not None:
            return error

        serializer = ForwardSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        target = ConversationService.get_for_user(
            serializer.validated_data["conversation_id"], request.user
        )
        if not target.success:
            return error_response(target)

        result = MessageService.forward(message, target.data, request.user)
        if not result.success:
            return error_response(result)

        get_publisher().message_created(result.data)
        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)
