"""Protocol flow CLI commands.

Signin and signout are split in two steps: the ``*-url`` commands build the
request and persist its state, ``callback`` consumes the redirect URL the
user agent lands on.
"""

from __future__ import annotations

from typing import Any

import click

from oidcrp.cli.common import json_option, output_result, parse_state_data, run_with_client
from oidcrp.core.oidc import OidcClient, RefreshState, User


def _user_summary(user: User) -> dict[str, Any]:
    return {
        "subject": user.profile.get("sub"),
        "scope": user.scope,
        "token_type": user.token_type,
        "expires_in": user.expires_in,
        "session_state": user.session_state,
        "state": user.state,
        "profile": user.profile,
    }


@click.command("discover")
@click.pass_context
def discover(ctx: click.Context) -> None:
    """Fetch and print the provider's discovery document."""

    async def action(client: OidcClient) -> dict[str, Any]:
        return await client.metadata_service.get_metadata()

    metadata = run_with_client(ctx, action, as_json=True)
    output_result(metadata, as_json=True)


@click.command("signin-url")
@click.option("--state-data", help="Caller data (JSON or string) returned with the response")
@click.option("--url-state", help="Value carried through the provider in the state parameter")
@click.option("--prompt", help="prompt parameter, e.g. login or consent")
@click.option("--login-hint", help="login_hint parameter")
@click.option("--scope", help="Override the configured scope")
@json_option
@click.pass_context
def signin_url(
    ctx: click.Context,
    state_data: str | None,
    url_state: str | None,
    prompt: str | None,
    login_hint: str | None,
    scope: str | None,
    output_json: bool,
) -> None:
    """Build an authorization URL and store its pending state.

    Examples:

        # Print the URL to open in a browser
        oidcrp signin-url --state-data '{"return_to": "/app"}'

        # JSON output for scripting
        oidcrp signin-url --json
    """
    kwargs: dict[str, Any] = {}
    if prompt:
        kwargs["prompt"] = prompt
    if scope:
        kwargs["scope"] = scope

    async def action(client: OidcClient) -> dict[str, Any]:
        request = await client.create_signin_request(
            state=parse_state_data(state_data),
            url_state=url_state,
            login_hint=login_hint,
            **kwargs,
        )
        return {"url": request.url, "state": request.state.id}

    result = run_with_client(ctx, action, output_json)
    output_result(result, output_json)


@click.command("callback")
@click.argument("url")
@json_option
@click.pass_context
def callback(ctx: click.Context, url: str, output_json: bool) -> None:
    """Complete a signin from the callback URL the provider redirected to."""

    async def action(client: OidcClient) -> User:
        response = await client.process_signin_response(url)
        return User.from_signin_response(response)

    user = run_with_client(ctx, action, output_json)
    if output_json:
        output_result({**user.to_dict(), "state": user.state}, as_json=True)
    else:
        click.echo("Signin completed.")
        output_result(_user_summary(user))


@click.command("refresh")
@click.option("--refresh-token", required=True, help="Refresh token to redeem")
@click.option("--id-token", help="Current ID Token, checked against the new one")
@click.option("--scope", help="Scope of the current session")
@click.option("--resource", multiple=True, help="Resource indicator (repeatable)")
@json_option
@click.pass_context
def refresh(
    ctx: click.Context,
    refresh_token: str,
    id_token: str | None,
    scope: str | None,
    resource: tuple[str, ...],
    output_json: bool,
) -> None:
    """Renew tokens with the refresh token grant."""
    state = RefreshState(
        refresh_token=refresh_token,
        id_token=id_token,
        scope=scope,
        resource=list(resource) or None,
    )

    async def action(client: OidcClient) -> User:
        response = await client.use_refresh_token(state)
        return User.from_signin_response(response)

    user = run_with_client(ctx, action, output_json)
    if output_json:
        output_result(user.to_dict(), as_json=True)
    else:
        click.echo("Tokens refreshed.")
        output_result(_user_summary(user))


@click.command("revoke")
@click.argument("token")
@click.option(
    "--type",
    "token_type",
    type=click.Choice(["access_token", "refresh_token"]),
    help="token_type_hint sent to the provider",
)
@json_option
@click.pass_context
def revoke(ctx: click.Context, token: str, token_type: str | None, output_json: bool) -> None:
    """Revoke an access or refresh token."""

    async def action(client: OidcClient) -> None:
        await client.revoke_token(token, token_type)

    run_with_client(ctx, action, output_json)
    if output_json:
        output_result({"status": "revoked", "token_type_hint": token_type}, as_json=True)
    else:
        click.echo("Token revoked.")


@click.command("signout-url")
@click.option("--id-token-hint", help="ID Token of the session to end")
@click.option("--state-data", help="Caller data (JSON or string) returned with the response")
@click.option("--post-logout-redirect-uri", help="Override the configured post-logout redirect")
@json_option
@click.pass_context
def signout_url(
    ctx: click.Context,
    id_token_hint: str | None,
    state_data: str | None,
    post_logout_redirect_uri: str | None,
    output_json: bool,
) -> None:
    """Build an end-session URL, storing its state when it has one."""
    kwargs: dict[str, Any] = {}
    if post_logout_redirect_uri:
        kwargs["post_logout_redirect_uri"] = post_logout_redirect_uri

    async def action(client: OidcClient) -> dict[str, Any]:
        request = await client.create_signout_request(
            state=parse_state_data(state_data),
            id_token_hint=id_token_hint,
            **kwargs,
        )
        return {"url": request.url, "state": request.state.id if request.state else None}

    result = run_with_client(ctx, action, output_json)
    output_result(result, output_json)
