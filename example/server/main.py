"""
Minimal server example.

Usage:
    uvicorn example.server.main:app

    curl -X POST localhost:8000/graphql \
        -H 'content-type: application/json' \
        -d '{"query": "{ movie(id: 1) { title reviews @defer { stars } } }"}'
"""

import logging

from graphql import build_schema

from graphpipe import GraphQLServer, HTTPDataSource, load_settings

logging.basicConfig(level=logging.INFO)

schema = build_schema("""
    type Query {
        movie(id: ID!): Movie
    }

    type Movie {
        id: ID!
        title: String
        reviews: [Review]
    }

    type Review {
        stars: Int
    }
""")


class MoviesAPI(HTTPDataSource):
    async def movie(self, movie_id):
        return await self.get(f"/movies/{movie_id}")

    async def reviews(self, movie_id):
        return await self.get(f"/movies/{movie_id}/reviews")


async def resolve_movie(info, id):
    movies = info.context["data_sources"]["movies"]
    movie = await movies.movie(id)

    async def reviews(info):
        return await movies.reviews(id)

    return {**movie, "reviews": reviews}


server = GraphQLServer(
    schema,
    settings=load_settings("graphpipe.yaml"),
    root_value={"movie": resolve_movie},
    data_sources=lambda: {"movies": MoviesAPI("http://movies:8000", cache_ttl=60)},
)

app = server.app
