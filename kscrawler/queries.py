"""GraphQL operation names and documents sent to the platform endpoint."""

PHOTO_FIELDS = """
  id
  duration
  caption
  likeCount
  realLikeCount
  viewCount
  commentCount
  coverUrl
  photoUrl
  timestamp
"""

SEARCH_PHOTO_OPERATION = "visionSearchPhoto"
SEARCH_PHOTO_QUERY = """
fragment photoContent on PhotoEntity {%s}

fragment feedContent on Feed {
  type
  author {
    id
    name
    headerUrl
    following
    headerUrls { url }
  }
  photo { ...photoContent }
  canAddComment
  llsid
  status
  currentPcursor
}

query visionSearchPhoto($keyword: String, $pcursor: String, $searchSessionId: String, $page: String, $webPageArea: String) {
  visionSearchPhoto(keyword: $keyword, pcursor: $pcursor, searchSessionId: $searchSessionId, page: $page, webPageArea: $webPageArea) {
    result
    llsid
    webPageArea
    feeds { ...feedContent }
    searchSessionId
    pcursor
  }
}
""" % PHOTO_FIELDS

PHOTO_DETAIL_OPERATION = "photoDetail"
PHOTO_DETAIL_QUERY = """
query photoDetail($photoId: String) {
  photoDetail(photoId: $photoId) {
    photo {%s}
    user {
      id
      eid
      name
      avatar
      gender
    }
  }
}
""" % PHOTO_FIELDS

COMMENT_LIST_OPERATION = "commentListQuery"
COMMENT_LIST_QUERY = """
query commentListQuery($photoId: String, $pcursor: String) {
  visionCommentList(photoId: $photoId, pcursor: $pcursor) {
    commentCount
    pcursor
    rootComments {
      commentId
      authorId
      authorName
      content
      timestamp
      likedCount
      realLikedCount
      subCommentCount
      subCommentsPcursor
      subComments {
        commentId
        authorId
        authorName
        content
        timestamp
        likedCount
        replyToUserName
        replyTo
      }
    }
  }
}
"""

SUB_COMMENT_LIST_OPERATION = "visionSubCommentList"
SUB_COMMENT_LIST_QUERY = """
query visionSubCommentList($photoId: String, $rootCommentId: String, $pcursor: String) {
  visionSubCommentList(photoId: $photoId, rootCommentId: $rootCommentId, pcursor: $pcursor) {
    pcursor
    subComments {
      commentId
      authorId
      authorName
      content
      timestamp
      likedCount
      replyToUserName
      replyTo
    }
  }
}
"""

USER_PROFILE_OPERATION = "userProfile"
USER_PROFILE_QUERY = """
query userProfile($userId: String) {
  userProfile(userId: $userId) {
    ownerCount { fan follow photo liked }
    profile {
      gender
      user {
        id
        eid
        name
        avatar
        isFollowing
        isFollower
        living
      }
    }
  }
}
"""

VISION_PROFILE_OPERATION = "visionProfile"
VISION_PROFILE_QUERY = """
query visionProfile($userId: String) {
  visionProfile(userId: $userId) {
    result
    hostName
    userProfile {
      ownerCount { fan photo follow photo_public }
      profile {
        gender
        user_name
        user_id
        headurl
        user_text
        user_profile_bg_url
      }
      isFollowing
    }
  }
}
"""

USER_PHOTO_LIST_OPERATION = "visionProfilePhotoList"
USER_PHOTO_LIST_QUERY = """
query visionProfilePhotoList($pcursor: String, $userId: String, $page: String, $webPageArea: String) {
  visionProfilePhotoList(pcursor: $pcursor, userId: $userId, page: $page, webPageArea: $webPageArea) {
    result
    llsid
    pcursor
    feeds {
      type
      author { id name }
      photo {%s}
    }
  }
}
""" % PHOTO_FIELDS

SEARCH_USER_OPERATION = "graphqlSearchUser"
SEARCH_USER_QUERY = """
query graphqlSearchUser($keyword: String, $pcursor: String, $searchSessionId: String) {
  visionSearchUser(keyword: $keyword, pcursor: $pcursor, searchSessionId: $searchSessionId) {
    result
    users {
      user_id
      user_name
      kwaiId
      fans
    }
    pcursor
  }
}
"""
